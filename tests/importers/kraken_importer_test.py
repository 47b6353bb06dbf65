from __future__ import annotations

import json
from csv import DictWriter
from decimal import Decimal
from pathlib import Path

import pytest

from domain.calculator import TaxCalculator
from importers.kraken_importer import KrakenImporter
from tests.constants import TAX_YEAR
from tests.helpers.records import make_ledger_entry, make_trade
from tests.helpers.time_utils import ts

LEDGER_FIELDNAMES = ["txid", "refid", "time", "type", "subtype", "aclass", "asset", "wallet", "amount", "fee", "balance"]
TRADE_FIELDNAMES = ["txid", "ordertxid", "pair", "time", "type", "ordertype", "price", "cost", "fee", "vol", "margin"]


def write_csv(path: Path, fieldnames: list[str], rows: list[dict[str, str]]) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = DictWriter(handle, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)


def test_load_trades_from_api_response(tmp_path: Path) -> None:
    trade = make_trade("buy", "1", "30000", timestamp=ts(2024, 1, 1))
    path = tmp_path / "trades.json"
    path.write_text(json.dumps({"error": [], "result": {"trades": {"TX-1": trade}, "count": 1}}))

    trades = KrakenImporter(trades_path=path).load_trades()

    assert list(trades) == ["TX-1"]
    assert trades["TX-1"]["pair"] == "XXBTZEUR"


def test_load_ledger_from_bare_mapping(tmp_path: Path) -> None:
    entry = make_ledger_entry("staking", "DOT.S", "0.1", timestamp=ts(2024, 1, 1))
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps({"LX-1": entry}))

    ledger = KrakenImporter(ledger_path=path).load_ledger()

    assert ledger == {"LX-1": entry}


def test_missing_paths_load_nothing() -> None:
    importer = KrakenImporter()

    assert importer.load_trades() == {}
    assert importer.load_ledger() == {}


def test_api_errors_are_raised(tmp_path: Path) -> None:
    path = tmp_path / "trades.json"
    path.write_text(json.dumps({"error": ["EAPI:Invalid key"]}))

    with pytest.raises(ValueError, match="EAPI:Invalid key"):
        KrakenImporter(trades_path=path).load_trades()


def test_malformed_payload_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps({"result": {"ledger": ["not", "a", "mapping"]}}))

    with pytest.raises(ValueError):
        KrakenImporter(ledger_path=path).load_ledger()


def test_load_ledger_csv_converts_time(tmp_path: Path) -> None:
    path = tmp_path / "ledgers.csv"
    write_csv(
        path,
        LEDGER_FIELDNAMES,
        [
            {
                "txid": "L-1",
                "refid": "R-1",
                "time": "2024-03-01 10:15:00",
                "type": "staking",
                "subtype": "",
                "aclass": "currency",
                "asset": "DOT.S",
                "wallet": "spot / main",
                "amount": "0.1",
                "fee": "0",
                "balance": "0.1",
            },
            {
                "txid": "",
                "refid": "R-2",
                "time": "2024-03-02 10:15:00.1234",
                "type": "deposit",
                "subtype": "",
                "aclass": "currency",
                "asset": "ZEUR",
                "wallet": "spot / main",
                "amount": "100",
                "fee": "0",
                "balance": "100",
            },
        ],
    )

    ledger = KrakenImporter(ledger_path=path).load_ledger()

    assert list(ledger) == ["L-1", "ledgers:3"]
    assert ledger["L-1"]["time"] == ts(2024, 3, 1, 10).timestamp() + 15 * 60
    assert "txid" not in ledger["L-1"]


def test_csv_trades_feed_the_calculator(tmp_path: Path) -> None:
    path = tmp_path / "trades.csv"
    write_csv(
        path,
        TRADE_FIELDNAMES,
        [
            {
                "txid": "T-1",
                "ordertxid": "O-1",
                "pair": "XBT/EUR",
                "time": "2024-01-01 12:00:00",
                "type": "buy",
                "ordertype": "limit",
                "price": "30000",
                "cost": "30000",
                "fee": "0",
                "vol": "1",
                "margin": "0",
            },
            {
                "txid": "T-2",
                "ordertxid": "O-2",
                "pair": "XBT/EUR",
                "time": "2024-06-01 12:00:00",
                "type": "sell",
                "ordertype": "limit",
                "price": "40000",
                "cost": "40000",
                "fee": "0",
                "vol": "1",
                "margin": "0",
            },
        ],
    )
    trades = KrakenImporter(trades_path=path).load_trades()

    result = TaxCalculator(TAX_YEAR).process(trades)

    assert result.errors == []
    assert [event.gain for event in result.tax_events] == [Decimal(10000)]

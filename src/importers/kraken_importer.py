from __future__ import annotations

import json
import logging
from csv import DictReader
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_CSV_TIME_FORMATS = ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S")


def _parse_csv_time(value: str) -> float | str:
    """Kraken CSV exports carry UTC wall-clock times; records use Unix seconds."""
    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass
    for time_format in _CSV_TIME_FORMATS:
        try:
            return datetime.strptime(text, time_format).replace(tzinfo=timezone.utc).timestamp()
        except ValueError:
            continue
    # Left as-is so the record fails validation on its own.
    return value


def _unwrap(payload: Any, key: str) -> dict[str, dict[str, Any]]:
    if not isinstance(payload, dict):
        raise ValueError(f"Kraken {key} payload must be a JSON object")

    errors = payload.get("error")
    if errors:
        raise ValueError(f"Kraken API response contains errors: {errors}")

    if "result" in payload:
        payload = payload["result"]
    if key in payload:
        payload = payload[key]
    if not isinstance(payload, dict):
        raise ValueError(f"Kraken {key} payload must map record ids to records")

    records: dict[str, dict[str, Any]] = {}
    for record_id, record in payload.items():
        if not isinstance(record, dict):
            raise ValueError(f"Kraken {key} record {record_id} must be an object")
        records[str(record_id)] = record
    return records


class KrakenImporter:
    """Reads Kraken trades and ledger entries from API JSON dumps or CSV exports.

    Records are returned raw (keyed by Kraken id); field validation happens per
    record in the tax calculator.
    """

    def __init__(self, trades_path: str | Path | None = None, ledger_path: str | Path | None = None) -> None:
        self._trades_path = Path(trades_path) if trades_path is not None else None
        self._ledger_path = Path(ledger_path) if ledger_path is not None else None

    def load_trades(self) -> dict[str, dict[str, Any]]:
        if self._trades_path is None:
            return {}
        trades = self._load(self._trades_path, "trades")
        logger.info("Loaded %d Kraken trades from %s", len(trades), self._trades_path)
        return trades

    def load_ledger(self) -> dict[str, dict[str, Any]]:
        if self._ledger_path is None:
            return {}
        ledger = self._load(self._ledger_path, "ledger")
        logger.info("Loaded %d Kraken ledger entries from %s", len(ledger), self._ledger_path)
        return ledger

    def _load(self, path: Path, key: str) -> dict[str, dict[str, Any]]:
        if path.suffix.lower() == ".csv":
            return self._read_csv(path)
        with path.open(encoding="utf-8") as handle:
            return _unwrap(json.load(handle), key)

    def _read_csv(self, path: Path) -> dict[str, dict[str, Any]]:
        records: dict[str, dict[str, Any]] = {}
        with path.open(encoding="utf-8", newline="") as handle:
            reader = DictReader(handle)
            for line_number, row in enumerate(reader, start=2):
                record: dict[str, Any] = {field: value for field, value in row.items() if field is not None}
                record_id = (record.pop("txid", None) or "").strip() or f"{path.stem}:{line_number}"
                if record.get("time"):
                    record["time"] = _parse_csv_time(record["time"])
                if record_id in records:
                    logger.warning("Duplicate Kraken record id %s in %s, keeping the last one", record_id, path)
                records[record_id] = record
        return records

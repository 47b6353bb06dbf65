from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable

from domain.ledger import ProcessedTransaction
from domain.tax_event import TaxEvent

from .formatting import format_date

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = (
    "Date",
    "Type",
    "Category",
    "Asset",
    "Amount",
    "Pair",
    "Side",
    "Price",
    "Cost",
    "Fee",
    "Fee Asset",
    "Leverage",
    "Kraken Ref",
)

TAX_EVENT_COLUMNS = (
    "Tax Year",
    "Type",
    "Asset",
    "Amount",
    "Acquisition Date",
    "Acquisition Cost",
    "Disposal Date",
    "Disposal Proceeds",
    "Gain/Loss",
    "Taxable Amount",
    "Cost Basis Method",
    "Transaction ID",
    "Warnings",
)


def _text(value: object | None) -> str:
    return "" if value is None else str(value)


def write_transactions_csv(path: Path, transactions: Iterable[ProcessedTransaction]) -> int:
    count = 0
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=TRANSACTION_COLUMNS, quoting=csv.QUOTE_ALL)
        writer.writeheader()
        for transaction in transactions:
            writer.writerow(
                {
                    "Date": transaction.timestamp.isoformat(),
                    "Type": transaction.type.value,
                    "Category": transaction.category.value,
                    "Asset": transaction.asset,
                    "Amount": str(transaction.amount),
                    "Pair": _text(transaction.pair),
                    "Side": _text(transaction.side.value if transaction.side is not None else None),
                    "Price": _text(transaction.price),
                    "Cost": _text(transaction.cost),
                    "Fee": _text(transaction.fee),
                    "Fee Asset": _text(transaction.fee_asset),
                    "Leverage": _text(transaction.leverage),
                    "Kraken Ref": transaction.source_ref_id,
                }
            )
            count += 1
    logger.info("Wrote %d transactions to %s", count, path)
    return count


def write_tax_events_csv(path: Path, tax_events: Iterable[TaxEvent]) -> int:
    count = 0
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=TAX_EVENT_COLUMNS, quoting=csv.QUOTE_ALL)
        writer.writeheader()
        for event in tax_events:
            writer.writerow(
                {
                    "Tax Year": str(event.tax_year),
                    "Type": event.type.value,
                    "Asset": event.asset,
                    "Amount": str(event.amount),
                    "Acquisition Date": format_date(event.acquisition_date),
                    "Acquisition Cost": str(event.acquisition_cost),
                    "Disposal Date": format_date(event.disposal_date),
                    "Disposal Proceeds": str(event.disposal_proceeds),
                    "Gain/Loss": str(event.gain),
                    "Taxable Amount": str(event.taxable_amount),
                    "Cost Basis Method": event.cost_basis_method.value,
                    "Transaction ID": event.transaction_id,
                    "Warnings": "; ".join(event.warnings),
                }
            )
            count += 1
    logger.info("Wrote %d tax events to %s", count, path)
    return count

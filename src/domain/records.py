"""Raw Kraken record shapes consumed by the tax calculator.

Numeric fields stay strings, as Kraken sends them; the calculator parses and
validates them per record so that one corrupted row cannot poison a run.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, field_validator

from .ledger import TradeSide


def _to_text(value: str | int | float | Decimal | None) -> str:
    if value is None or value == "":
        return "0"
    return str(value)


class KrakenTrade(BaseModel):
    pair: str
    type: TradeSide
    ordertxid: str = ""
    vol: str
    price: str
    cost: str
    fee: str = "0"
    margin: str | None = None
    leverage: str | None = None
    time: float

    @field_validator("vol", "price", "cost", "fee", mode="before")
    @classmethod
    def _ensure_text(cls, value: str | int | float | Decimal | None) -> str:
        return _to_text(value)

    @field_validator("margin", "leverage", mode="before")
    @classmethod
    def _empty_optional(cls, value: str | int | float | Decimal | None) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("type", mode="before")
    @classmethod
    def _lower_side(cls, value: str) -> str:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.time, tz=timezone.utc)


class KrakenLedgerEntry(BaseModel):
    refid: str
    type: str
    subtype: str | None = None
    asset: str
    amount: str
    fee: str = "0"
    time: float

    @field_validator("amount", "fee", mode="before")
    @classmethod
    def _ensure_text(cls, value: str | int | float | Decimal | None) -> str:
        return _to_text(value)

    @field_validator("subtype", mode="before")
    @classmethod
    def _empty_subtype(cls, value: str | None) -> str | None:
        if value == "":
            return None
        return value

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.time, tz=timezone.utc)

from __future__ import annotations

from collections import defaultdict, deque
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel

from .ledger import AcquisitionLot, AssetId, MatchedLot, TransactionId


class InventoryError(Exception):
    def __init__(
        self,
        message: str,
        *,
        asset: str | None = None,
        quantity_needed: Decimal | None = None,
    ) -> None:
        super().__init__(message)
        self.asset = asset
        self.quantity_needed = quantity_needed


class HoldingSummary(BaseModel):
    asset: AssetId
    amount: Decimal
    cost_basis: Decimal
    average_cost: Decimal


class FifoLedger:
    """Per-asset queue of open acquisition lots, matched oldest first."""

    def __init__(self) -> None:
        self._holdings: dict[str, deque[AcquisitionLot]] = defaultdict(deque)

    @classmethod
    def from_lots(cls, lots: Iterable[AcquisitionLot]) -> FifoLedger:
        ledger = cls()
        for lot in lots:
            if lot.remaining_amount > 0:
                ledger._insert_lot(lot.model_copy())
        return ledger

    def add_acquisition(
        self,
        asset: str,
        amount: Decimal,
        total_cost: Decimal,
        date: datetime,
        transaction_id: str | None = None,
    ) -> AcquisitionLot:
        if amount <= 0:
            raise ValueError(f"Acquisition amount must be > 0 (asset={asset}, amount={amount})")
        if total_cost < 0:
            raise ValueError(f"Acquisition cost must be >= 0 (asset={asset}, cost={total_cost})")

        lot = AcquisitionLot(
            asset=AssetId(asset),
            amount=amount,
            cost_per_unit=total_cost / amount,
            total_cost=total_cost,
            remaining_amount=amount,
            acquisition_date=date,
            source_transaction_id=TransactionId(transaction_id) if transaction_id is not None else None,
        )
        self._insert_lot(lot)
        return lot

    def consume(self, asset: str, amount: Decimal, date: datetime) -> list[MatchedLot]:
        """Match `amount` against open lots oldest first.

        Returns fewer matches than requested when the lots run out; the caller
        decides how to treat the unmatched remainder.
        """
        open_lots = self._holdings.get(asset)
        if not open_lots:
            return []

        matches: list[MatchedLot] = []
        remaining = amount
        for lot in open_lots:
            if remaining <= 0:
                break
            if lot.remaining_amount <= 0:
                continue

            take_quantity = min(remaining, lot.remaining_amount)
            matches.append(
                MatchedLot(
                    lot_id=lot.id,
                    amount=take_quantity,
                    cost_basis=take_quantity * lot.cost_per_unit,
                    acquisition_date=lot.acquisition_date,
                    holding_period_days=(date - lot.acquisition_date).days,
                )
            )
            lot.remaining_amount -= take_quantity
            remaining -= take_quantity

        while open_lots and open_lots[0].remaining_amount <= 0:
            open_lots.popleft()
        if not open_lots:
            del self._holdings[asset]

        return matches

    def lots(self, asset: str) -> list[AcquisitionLot]:
        return list(self._holdings.get(asset, ()))

    def open_lots(self) -> list[AcquisitionLot]:
        return [lot for asset in sorted(self._holdings) for lot in self._holdings[asset]]

    def total_amount(self, asset: str) -> Decimal:
        return sum((lot.remaining_amount for lot in self._holdings.get(asset, ())), start=Decimal(0))

    def total_cost_basis(self, asset: str) -> Decimal:
        return sum(
            (lot.remaining_amount * lot.cost_per_unit for lot in self._holdings.get(asset, ())),
            start=Decimal(0),
        )

    def average_cost(self, asset: str) -> Decimal:
        amount = self.total_amount(asset)
        if amount <= 0:
            return Decimal(0)
        return self.total_cost_basis(asset) / amount

    def holdings_summary(self) -> list[HoldingSummary]:
        summary: list[HoldingSummary] = []
        for asset in sorted(self._holdings):
            amount = self.total_amount(asset)
            if amount <= 0:
                continue
            summary.append(
                HoldingSummary(
                    asset=AssetId(asset),
                    amount=amount,
                    cost_basis=self.total_cost_basis(asset),
                    average_cost=self.average_cost(asset),
                )
            )
        return summary

    def clear(self) -> None:
        self._holdings.clear()

    def _insert_lot(self, lot: AcquisitionLot) -> None:
        open_lots = self._holdings[lot.asset]
        insert_at = None
        for idx, existing in enumerate(open_lots):
            if existing.acquisition_date > lot.acquisition_date:
                insert_at = idx
                break

        if insert_at is None:
            open_lots.append(lot)
        else:
            open_lots.insert(insert_at, lot)

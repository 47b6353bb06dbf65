from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel

from .ledger import AssetId

# Positions closing below this fraction of their previous size are treated as
# fully closed. Assets carry anywhere from 8 to 18 decimals.
CLOSE_RELATIVE_TOLERANCE = Decimal("1e-10")


class AssetPosition(BaseModel):
    asset: AssetId
    total_amount: Decimal
    total_cost: Decimal
    average_cost: Decimal


@dataclass(frozen=True)
class PositionConsumption:
    cost_basis: Decimal
    average_cost_used: Decimal
    matched_amount: Decimal


class WeightedAverageTracker:
    """Single running position per asset, valued at its average cost."""

    def __init__(self) -> None:
        self._positions: dict[str, AssetPosition] = {}

    @classmethod
    def from_positions(cls, positions: Iterable[AssetPosition]) -> WeightedAverageTracker:
        tracker = cls()
        for position in positions:
            tracker._positions[position.asset] = position.model_copy()
        return tracker

    def add_acquisition(self, asset: str, amount: Decimal, cost: Decimal) -> AssetPosition:
        if amount <= 0:
            raise ValueError(f"Acquisition amount must be > 0 (asset={asset}, amount={amount})")
        if cost < 0:
            raise ValueError(f"Acquisition cost must be >= 0 (asset={asset}, cost={cost})")

        existing = self._positions.get(asset)
        total_amount = amount if existing is None else existing.total_amount + amount
        total_cost = cost if existing is None else existing.total_cost + cost

        position = AssetPosition(
            asset=AssetId(asset),
            total_amount=total_amount,
            total_cost=total_cost,
            average_cost=total_cost / total_amount,
        )
        self._positions[asset] = position
        return position

    def consume(self, asset: str, amount: Decimal) -> PositionConsumption:
        position = self._positions.get(asset)
        if position is None or position.total_amount <= 0:
            return PositionConsumption(
                cost_basis=Decimal(0),
                average_cost_used=Decimal(0),
                matched_amount=Decimal(0),
            )

        matched_amount = min(amount, position.total_amount)
        cost_basis = matched_amount * position.average_cost

        remaining_amount = position.total_amount - matched_amount
        # Same as total_cost - cost_basis, but keeps total_cost / total_amount equal to the average.
        remaining_cost = remaining_amount * position.average_cost
        if self._is_closed(remaining_amount, position.total_amount):
            del self._positions[asset]
        else:
            # The average stays put on disposal; only the totals shrink.
            self._positions[asset] = AssetPosition(
                asset=position.asset,
                total_amount=remaining_amount,
                total_cost=remaining_cost,
                average_cost=position.average_cost,
            )

        return PositionConsumption(
            cost_basis=cost_basis,
            average_cost_used=position.average_cost,
            matched_amount=matched_amount,
        )

    def position(self, asset: str) -> AssetPosition | None:
        return self._positions.get(asset)

    def positions(self) -> list[AssetPosition]:
        return [self._positions[asset] for asset in sorted(self._positions)]

    def total_amount(self, asset: str) -> Decimal:
        position = self._positions.get(asset)
        return position.total_amount if position is not None else Decimal(0)

    def total_value(self) -> Decimal:
        return sum((position.total_cost for position in self._positions.values()), start=Decimal(0))

    def clear(self) -> None:
        self._positions.clear()

    @staticmethod
    def _is_closed(remaining_amount: Decimal, previous_amount: Decimal) -> bool:
        if remaining_amount <= 0:
            return True
        return abs(remaining_amount / previous_amount) < CLOSE_RELATIVE_TOLERANCE

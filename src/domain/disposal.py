from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from .inventory import FifoLedger, InventoryError
from .ledger import AcquisitionLot, AssetId, CostBasisMethod, DisposalResult
from .weighted_average import CLOSE_RELATIVE_TOLERANCE, WeightedAverageTracker

logger = logging.getLogger(__name__)


class OverDisposalPolicy(StrEnum):
    """What to do when more is disposed of than was ever acquired."""

    ZERO_COST = "zero_cost"
    REJECT = "reject"


class OverDisposalError(InventoryError):
    pass


class DisposalResolver:
    """Keeps the FIFO ledger and the weighted-average tracker in lockstep.

    Every acquisition goes to both trackers and every disposal shrinks both, so
    either method can be asked for a result without replaying history.
    """

    def __init__(
        self,
        *,
        fifo_ledger: FifoLedger | None = None,
        wa_tracker: WeightedAverageTracker | None = None,
        over_disposal_policy: OverDisposalPolicy = OverDisposalPolicy.ZERO_COST,
    ) -> None:
        self.fifo_ledger = fifo_ledger if fifo_ledger is not None else FifoLedger()
        self.wa_tracker = wa_tracker if wa_tracker is not None else WeightedAverageTracker()
        self.over_disposal_policy = over_disposal_policy

    def record_acquisition(
        self,
        asset: str,
        amount: Decimal,
        total_cost: Decimal,
        date: datetime,
        transaction_id: str | None = None,
    ) -> AcquisitionLot:
        lot = self.fifo_ledger.add_acquisition(asset, amount, total_cost, date, transaction_id)
        self.wa_tracker.add_acquisition(asset, amount, total_cost)
        return lot

    def available(self, method: CostBasisMethod, asset: str) -> Decimal:
        if method == CostBasisMethod.FIFO:
            return self.fifo_ledger.total_amount(asset)
        return self.wa_tracker.total_amount(asset)

    def resolve_disposal(
        self,
        method: CostBasisMethod,
        asset: str,
        amount: Decimal,
        proceeds: Decimal,
        date: datetime,
    ) -> DisposalResult:
        if amount <= 0:
            raise ValueError(f"Disposal amount must be > 0 (asset={asset}, amount={amount})")

        shortfall = amount - self.available(method, asset)
        if shortfall > amount * CLOSE_RELATIVE_TOLERANCE and self.over_disposal_policy == OverDisposalPolicy.REJECT:
            raise OverDisposalError(
                f"Disposal of {amount} {asset} on {date.isoformat()} exceeds holdings by {shortfall}",
                asset=asset,
                quantity_needed=shortfall,
            )

        matched_lots = self.fifo_ledger.consume(asset, amount, date)
        consumption = self.wa_tracker.consume(asset, amount)

        if method == CostBasisMethod.FIFO:
            total_cost_basis = sum((match.cost_basis for match in matched_lots), start=Decimal(0))
            matched_amount = sum((match.amount for match in matched_lots), start=Decimal(0))
            result = DisposalResult(
                asset=AssetId(asset),
                method=method,
                disposal_amount=amount,
                disposal_proceeds=proceeds,
                total_cost_basis=total_cost_basis,
                gain=proceeds - total_cost_basis,
                matched_lots=matched_lots,
                unmatched_amount=amount - matched_amount,
            )
        else:
            result = DisposalResult(
                asset=AssetId(asset),
                method=method,
                disposal_amount=amount,
                disposal_proceeds=proceeds,
                total_cost_basis=consumption.cost_basis,
                gain=proceeds - consumption.cost_basis,
                average_cost_used=consumption.average_cost_used,
                unmatched_amount=amount - consumption.matched_amount,
            )

        if result.unmatched_amount > 0:
            logger.debug(
                "Disposal of %s %s left %s without cost basis (%s)", amount, asset, result.unmatched_amount, method
            )
        return result

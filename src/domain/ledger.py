from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import NewType
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

AssetId = NewType("AssetId", str)
LotId = NewType("LotId", UUID)
TransactionId = NewType("TransactionId", str)


class TransactionType(StrEnum):
    TRADE = "TRADE"
    MARGIN_TRADE = "MARGIN_TRADE"
    MARGIN_SETTLEMENT = "MARGIN_SETTLEMENT"
    ROLLOVER = "ROLLOVER"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    STAKING_REWARD = "STAKING_REWARD"
    STAKING_DEPOSIT = "STAKING_DEPOSIT"
    STAKING_WITHDRAWAL = "STAKING_WITHDRAWAL"
    EARN_REWARD = "EARN_REWARD"
    EARN_ALLOCATION = "EARN_ALLOCATION"
    CREDIT = "CREDIT"
    AIRDROP = "AIRDROP"
    FORK = "FORK"
    FEE = "FEE"
    ADJUSTMENT = "ADJUSTMENT"
    NFT_TRADE = "NFT_TRADE"
    SPEND = "SPEND"
    RECEIVE = "RECEIVE"


class TransactionCategory(StrEnum):
    TAXABLE_INCOME = "TAXABLE_INCOME"
    NON_TAXABLE = "NON_TAXABLE"
    COST_BASIS_ADJUSTMENT = "COST_BASIS_ADJUSTMENT"
    FEE = "FEE"


class TradeSide(StrEnum):
    BUY = "buy"
    SELL = "sell"


class CostBasisMethod(StrEnum):
    FIFO = "FIFO"
    WEIGHTED_AVERAGE = "WEIGHTED_AVERAGE"


class AccountType(StrEnum):
    INDIVIDUAL = "individual"
    BUSINESS = "business"


INCOME_TYPES = frozenset(
    {
        TransactionType.STAKING_REWARD,
        TransactionType.EARN_REWARD,
        TransactionType.CREDIT,
        TransactionType.AIRDROP,
        TransactionType.FORK,
    }
)
MARGIN_TYPES = frozenset({TransactionType.MARGIN_TRADE, TransactionType.MARGIN_SETTLEMENT})


class ProcessedTransaction(BaseModel):
    """Normalized view of one raw exchange record.

    Amount sign convention:
    - Positive amount indicates an inflow of `asset`.
    - Negative amount indicates an outflow of `asset`.
    """

    model_config = ConfigDict(frozen=True)

    id: TransactionId
    source_ref_id: str
    order_id: str | None = None
    type: TransactionType
    category: TransactionCategory
    asset: AssetId
    amount: Decimal
    pair: str | None = None
    side: TradeSide | None = None
    price: Decimal | None = None
    cost: Decimal | None = None
    fee: Decimal | None = None
    fee_asset: AssetId | None = None
    leverage: str | None = None
    timestamp: datetime

    @model_validator(mode="after")
    def _validate_fields(self) -> ProcessedTransaction:
        if not self.id:
            raise ValueError("ProcessedTransaction.id must be non-empty")
        if self.timestamp.tzinfo is None:
            raise ValueError("ProcessedTransaction.timestamp must be timezone-aware")
        return self


class AcquisitionLot(BaseModel):
    """One discrete acquisition of an asset.

    `remaining_amount` is only decreased by the FIFO ledger while matching
    disposals.
    """

    id: LotId = LotId(Field(default_factory=uuid4))
    asset: AssetId
    amount: Decimal
    cost_per_unit: Decimal
    total_cost: Decimal
    remaining_amount: Decimal
    acquisition_date: datetime
    source_transaction_id: TransactionId | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> AcquisitionLot:
        if self.amount <= 0:
            raise ValueError("amount must be > 0")
        if self.total_cost < 0:
            raise ValueError("total_cost must be >= 0")
        if self.cost_per_unit < 0:
            raise ValueError("cost_per_unit must be >= 0")
        if not 0 <= self.remaining_amount <= self.amount:
            raise ValueError("remaining_amount must be within [0, amount]")
        return self


class MatchedLot(BaseModel):
    model_config = ConfigDict(frozen=True)

    lot_id: LotId
    amount: Decimal
    cost_basis: Decimal
    acquisition_date: datetime
    holding_period_days: int

    @model_validator(mode="after")
    def _validate(self) -> MatchedLot:
        if self.amount <= 0:
            raise ValueError("amount must be > 0")
        if self.cost_basis < 0:
            raise ValueError("cost_basis must be >= 0")
        return self


class DisposalResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset: AssetId
    method: CostBasisMethod
    disposal_amount: Decimal
    disposal_proceeds: Decimal
    total_cost_basis: Decimal
    gain: Decimal
    matched_lots: list[MatchedLot] | None = None
    average_cost_used: Decimal | None = None
    unmatched_amount: Decimal = Decimal("0")

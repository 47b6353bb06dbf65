from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import NewType
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from domain.ledger import AccountType, AssetId, CostBasisMethod, MatchedLot, TransactionId, TransactionType

TaxEventId = NewType("TaxEventId", UUID)


class TaxEvent(BaseModel):
    """One resolved disposal, or one income receipt awaiting valuation."""

    model_config = ConfigDict(frozen=True)

    id: TaxEventId = TaxEventId(Field(default_factory=uuid4))
    transaction_id: TransactionId
    tax_year: int
    type: TransactionType
    asset: AssetId
    amount: Decimal
    acquisition_date: datetime
    acquisition_cost: Decimal
    disposal_date: datetime
    disposal_proceeds: Decimal
    gain: Decimal
    taxable_amount: Decimal
    cost_basis_method: CostBasisMethod
    matched_lots: list[MatchedLot] | None = None
    fee: Decimal | None = None
    warnings: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_fields(self) -> TaxEvent:
        if self.gain != self.disposal_proceeds - self.acquisition_cost:
            raise ValueError("gain must equal disposal_proceeds - acquisition_cost")
        if self.taxable_amount < 0:
            raise ValueError("taxable_amount must be >= 0")
        return self


class TaxSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    tax_year: int
    account_type: AccountType
    cost_basis_method: CostBasisMethod
    tax_rate: Decimal

    total_gains: Decimal
    total_losses: Decimal
    net_pnl: Decimal

    # Individual: gains only. Business: always 0, tax deferred to distribution.
    taxable_amount: Decimal
    estimated_tax: Decimal

    retained_profit: Decimal = Decimal("0")
    distribution_tax_rate: Decimal = Decimal("0")
    potential_distribution_tax: Decimal = Decimal("0")
    prior_loss_carryforward: Decimal = Decimal("0")
    loss_carryforward: Decimal = Decimal("0")
    has_loss_carryforward: bool = False

    trading_gains: Decimal = Decimal("0")
    trading_losses: Decimal = Decimal("0")
    margin_gains: Decimal = Decimal("0")
    margin_losses: Decimal = Decimal("0")
    staking_income: Decimal = Decimal("0")
    earn_income: Decimal = Decimal("0")
    credit_income: Decimal = Decimal("0")
    airdrop_income: Decimal = Decimal("0")
    other_income: Decimal = Decimal("0")

    total_trading_fees: Decimal = Decimal("0")
    total_margin_fees: Decimal = Decimal("0")

    total_transactions: int = 0
    taxable_transactions: int = 0

    warnings: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_totals(self) -> TaxSummary:
        if self.net_pnl != self.total_gains - self.total_losses:
            raise ValueError("net_pnl must equal total_gains - total_losses")
        return self

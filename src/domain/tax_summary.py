from __future__ import annotations

from collections import Counter
from decimal import Decimal
from typing import Iterable, Mapping

from .estonia_rules import REPORTING_CURRENCY, effective_distribution_rate, normalize_asset, tax_rate
from .ledger import INCOME_TYPES, MARGIN_TYPES, AccountType, CostBasisMethod, ProcessedTransaction, TransactionType
from .tax_event import TaxEvent, TaxSummary

_MARGIN_FEE_TYPES = frozenset({*MARGIN_TYPES, TransactionType.ROLLOVER})

_INCOME_LABELS = {
    TransactionType.STAKING_REWARD: "staking reward(s)",
    TransactionType.EARN_REWARD: "earn reward(s)",
    TransactionType.CREDIT: "credit(s)",
    TransactionType.AIRDROP: "airdrop(s)",
    TransactionType.FORK: "fork(s)",
}


def _eur(value: Decimal) -> str:
    return f"{value.quantize(Decimal('0.01'))} EUR"


def chain_loss_carryforward(net_pnl_by_year: Mapping[int, Decimal], tax_year: int) -> Decimal:
    """Loss carried into `tax_year` after applying every earlier year in order."""
    carryforward = Decimal(0)
    for year in sorted(year for year in net_pnl_by_year if year < tax_year):
        adjusted = net_pnl_by_year[year] - carryforward
        carryforward = -adjusted if adjusted < 0 else Decimal(0)
    return carryforward


class TaxSummaryAggregator:
    """Folds tax events of one year into a TaxSummary.

    Accumulates until `finalize()`; afterwards the aggregator is closed.
    """

    def __init__(
        self,
        tax_year: int,
        *,
        account_type: AccountType = AccountType.INDIVIDUAL,
        cost_basis_method: CostBasisMethod = CostBasisMethod.FIFO,
        prior_loss_carryforward: Decimal = Decimal(0),
    ) -> None:
        if prior_loss_carryforward < 0:
            raise ValueError("prior_loss_carryforward must be >= 0")
        self.tax_year = tax_year
        self.account_type = account_type
        self.cost_basis_method = cost_basis_method
        self.prior_loss_carryforward = prior_loss_carryforward

        self._finalized = False
        self._totals: dict[str, Decimal] = {
            "total_gains": Decimal(0),
            "total_losses": Decimal(0),
            "trading_gains": Decimal(0),
            "trading_losses": Decimal(0),
            "margin_gains": Decimal(0),
            "margin_losses": Decimal(0),
            "staking_income": Decimal(0),
            "earn_income": Decimal(0),
            "credit_income": Decimal(0),
            "airdrop_income": Decimal(0),
            "other_income": Decimal(0),
            "total_trading_fees": Decimal(0),
            "total_margin_fees": Decimal(0),
        }
        self._total_transactions = 0
        self._taxable_transactions = 0
        self._missing_valuations: Counter[TransactionType] = Counter()
        self._missing_cost_basis = 0
        self._warnings: list[str] = []

    def add_events(self, events: Iterable[TaxEvent]) -> None:
        for event in events:
            self.add_event(event)

    def add_event(self, event: TaxEvent) -> None:
        self._ensure_open()
        gain = event.gain
        totals = self._totals

        if gain > 0:
            totals["total_gains"] += gain
        else:
            totals["total_losses"] += -gain

        if event.type == TransactionType.TRADE:
            self._add_gain_or_loss("trading", gain)
        elif event.type in MARGIN_TYPES:
            self._add_gain_or_loss("margin", gain)
        elif event.type in INCOME_TYPES:
            bucket = {
                TransactionType.STAKING_REWARD: "staking_income",
                TransactionType.EARN_REWARD: "earn_income",
                TransactionType.CREDIT: "credit_income",
                TransactionType.AIRDROP: "airdrop_income",
                TransactionType.FORK: "airdrop_income",
            }[event.type]
            totals[bucket] += gain
            if gain != 0:
                self._taxable_transactions += 1
            elif event.amount > 0:
                self._missing_valuations[event.type] += 1
        elif gain > 0:
            totals["other_income"] += gain
            self._taxable_transactions += 1

        if event.type not in INCOME_TYPES and event.acquisition_cost == 0 and event.disposal_proceeds > 0:
            self._missing_cost_basis += 1

    def add_transaction(self, transaction: ProcessedTransaction) -> None:
        self._ensure_open()
        self._total_transactions += 1

        # Fees in any other currency have no EUR value without a price.
        if not transaction.fee or transaction.fee <= 0:
            return
        if transaction.fee_asset is None or normalize_asset(transaction.fee_asset) != REPORTING_CURRENCY:
            return
        if transaction.type in _MARGIN_FEE_TYPES:
            self._totals["total_margin_fees"] += transaction.fee
        else:
            self._totals["total_trading_fees"] += transaction.fee

    def add_warning(self, warning: str) -> None:
        self._ensure_open()
        self._warnings.append(warning)

    def finalize(self) -> TaxSummary:
        self._ensure_open()
        self._finalized = True

        totals = self._totals
        total_gains = totals["total_gains"]
        total_losses = totals["total_losses"]
        net_pnl = total_gains - total_losses
        warnings = list(self._warnings)

        for transaction_type, count in self._missing_valuations.items():
            warnings.append(
                f"{count} {_INCOME_LABELS[transaction_type]} have no fair market value - manual calculation needed"
            )
        if self._missing_cost_basis:
            warnings.append(
                f"{self._missing_cost_basis} disposal(s) had no cost basis - full proceeds treated as gain"
            )

        rate = tax_rate(self.tax_year, self.account_type)
        distribution_rate = effective_distribution_rate(self.tax_year)
        retained_profit = Decimal(0)
        potential_distribution_tax = Decimal(0)
        loss_carryforward = Decimal(0)

        if self.account_type == AccountType.BUSINESS:
            taxable_amount = Decimal(0)
            estimated_tax = Decimal(0)
            adjusted_net_pnl = net_pnl - self.prior_loss_carryforward
            retained_profit = adjusted_net_pnl
            if adjusted_net_pnl < 0:
                loss_carryforward = -adjusted_net_pnl
            else:
                potential_distribution_tax = adjusted_net_pnl * distribution_rate
            if self.prior_loss_carryforward > 0:
                warnings.append(f"Applied {_eur(self.prior_loss_carryforward)} loss carryforward from prior years")
        else:
            taxable_amount = total_gains
            estimated_tax = taxable_amount * rate
            if total_losses > 0:
                warnings.append(
                    f"{_eur(total_losses)} in losses cannot be deducted (Estonian individual tax rules)"
                )

        return TaxSummary(
            tax_year=self.tax_year,
            account_type=self.account_type,
            cost_basis_method=self.cost_basis_method,
            tax_rate=rate,
            total_gains=total_gains,
            total_losses=total_losses,
            net_pnl=net_pnl,
            taxable_amount=taxable_amount,
            estimated_tax=estimated_tax,
            retained_profit=retained_profit,
            distribution_tax_rate=distribution_rate if self.account_type == AccountType.BUSINESS else Decimal(0),
            potential_distribution_tax=potential_distribution_tax,
            prior_loss_carryforward=self.prior_loss_carryforward,
            loss_carryforward=loss_carryforward,
            has_loss_carryforward=loss_carryforward > 0,
            trading_gains=totals["trading_gains"],
            trading_losses=totals["trading_losses"],
            margin_gains=totals["margin_gains"],
            margin_losses=totals["margin_losses"],
            staking_income=totals["staking_income"],
            earn_income=totals["earn_income"],
            credit_income=totals["credit_income"],
            airdrop_income=totals["airdrop_income"],
            other_income=totals["other_income"],
            total_trading_fees=totals["total_trading_fees"],
            total_margin_fees=totals["total_margin_fees"],
            total_transactions=self._total_transactions,
            taxable_transactions=self._taxable_transactions,
            warnings=list(dict.fromkeys(warnings)),
        )

    def _add_gain_or_loss(self, prefix: str, gain: Decimal) -> None:
        if gain > 0:
            self._totals[f"{prefix}_gains"] += gain
        else:
            self._totals[f"{prefix}_losses"] += -gain
        if gain != 0:
            self._taxable_transactions += 1

    def _ensure_open(self) -> None:
        if self._finalized:
            raise RuntimeError(f"Tax summary for {self.tax_year} is already finalized")

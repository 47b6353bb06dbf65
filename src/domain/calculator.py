from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ValidationError

from .disposal import DisposalResolver, OverDisposalPolicy
from .estonia_rules import (
    REPORTING_CURRENCY,
    categorize_transaction,
    classify,
    is_reportable_asset,
    normalize_asset,
    parse_pair,
)
from .inventory import HoldingSummary, InventoryError
from .ledger import (
    INCOME_TYPES,
    AccountType,
    AssetId,
    CostBasisMethod,
    DisposalResult,
    ProcessedTransaction,
    TradeSide,
    TransactionId,
    TransactionType,
)
from .records import KrakenLedgerEntry, KrakenTrade
from .tax_event import TaxEvent, TaxSummary
from .tax_summary import TaxSummaryAggregator

logger = logging.getLogger(__name__)

DEFAULT_SHORT_HOLDING_DAYS = 30

NO_COST_BASIS_WARNING = "No cost basis found - full proceeds treated as gain"

_RECORD_ERRORS = (ValueError, ArithmeticError, ValidationError, InventoryError)

_TRADE_TYPES = frozenset({TransactionType.TRADE, TransactionType.MARGIN_TRADE})


class RecordValidationError(ValueError):
    pass


class RecordError(BaseModel):
    id: str
    error: str


@dataclass
class ProcessingResult:
    transactions: list[ProcessedTransaction]
    tax_events: list[TaxEvent]
    summary: TaxSummary
    errors: list[RecordError] = field(default_factory=list)


def _parse_decimal(value: str, field_name: str, *, allow_negative: bool = False) -> Decimal:
    try:
        parsed = Decimal(value)
    except InvalidOperation as err:
        raise RecordValidationError(f"Invalid {field_name}: {value!r} is not a number") from err
    if not parsed.is_finite():
        raise RecordValidationError(f"Invalid {field_name}: {value!r} is not finite")
    if not allow_negative and parsed < 0:
        raise RecordValidationError(f"Invalid {field_name}: {value!r} is negative")
    return parsed


class TaxCalculator:
    """Turns Kraken trades and ledger entries into tax events for one tax year.

    An instance owns all of its state (lots, positions, transactions, events).
    Build a fresh one for every run and never share it between runs.
    """

    def __init__(
        self,
        tax_year: int,
        *,
        cost_basis_method: CostBasisMethod = CostBasisMethod.FIFO,
        account_type: AccountType = AccountType.INDIVIDUAL,
        prior_loss_carryforward: Decimal = Decimal(0),
        over_disposal_policy: OverDisposalPolicy = OverDisposalPolicy.ZERO_COST,
        short_holding_days: int = DEFAULT_SHORT_HOLDING_DAYS,
    ) -> None:
        self.tax_year = tax_year
        self.cost_basis_method = cost_basis_method
        self.account_type = account_type
        self.prior_loss_carryforward = prior_loss_carryforward
        self.short_holding_days = short_holding_days
        self.resolver = DisposalResolver(over_disposal_policy=over_disposal_policy)

        self._transactions: list[ProcessedTransaction] = []
        self._tax_events: list[TaxEvent] = []
        self._errors: list[RecordError] = []
        self._warnings: list[str] = []

    def process(
        self,
        trades: Mapping[str, KrakenTrade | Mapping[str, Any]] | None = None,
        ledger: Mapping[str, KrakenLedgerEntry | Mapping[str, Any]] | None = None,
    ) -> ProcessingResult:
        """Process both record streams in time order and return the results."""
        queue: list[tuple[float, int, Callable[[], None]]] = []
        for trade_id, trade in (trades or {}).items():
            queue.append((self._record_time(trade), len(queue), partial(self.process_trade, trade, trade_id)))
        for ledger_id, entry in (ledger or {}).items():
            queue.append((self._record_time(entry), len(queue), partial(self.process_ledger, entry, ledger_id)))
        queue.sort(key=lambda item: (item[0], item[1]))

        logger.info(
            "Processing %d trades and %d ledger entries for tax year %d (%s, %s)",
            len(trades or {}),
            len(ledger or {}),
            self.tax_year,
            self.cost_basis_method,
            self.account_type,
        )
        for _, _, process_record in queue:
            process_record()

        return self.results()

    def process_trade(self, trade: KrakenTrade | Mapping[str, Any], trade_id: str) -> None:
        try:
            self._process_trade(trade, trade_id)
        except _RECORD_ERRORS as err:
            self._record_error(trade_id, err)

    def process_ledger(self, entry: KrakenLedgerEntry | Mapping[str, Any], ledger_id: str) -> None:
        try:
            self._process_ledger(entry, ledger_id)
        except _RECORD_ERRORS as err:
            self._record_error(ledger_id, err)

    def results(self) -> ProcessingResult:
        aggregator = TaxSummaryAggregator(
            self.tax_year,
            account_type=self.account_type,
            cost_basis_method=self.cost_basis_method,
            prior_loss_carryforward=self.prior_loss_carryforward,
        )
        # Ledger legs of a trade repeat its fee; the trade record already carries it.
        trade_refs = {transaction.source_ref_id for transaction in self._transactions if transaction.side is not None}
        for transaction in self._transactions:
            if transaction.timestamp.year != self.tax_year:
                continue
            if (
                transaction.side is None
                and transaction.type in _TRADE_TYPES
                and transaction.source_ref_id in trade_refs
            ):
                continue
            aggregator.add_transaction(transaction)
        aggregator.add_events(self._tax_events)
        for warning in self._warnings:
            aggregator.add_warning(warning)

        return ProcessingResult(
            transactions=list(self._transactions),
            tax_events=list(self._tax_events),
            summary=aggregator.finalize(),
            errors=list(self._errors),
        )

    def holdings_summary(self) -> list[HoldingSummary]:
        if self.cost_basis_method == CostBasisMethod.FIFO:
            return self.resolver.fifo_ledger.holdings_summary()
        return [
            HoldingSummary(
                asset=position.asset,
                amount=position.total_amount,
                cost_basis=position.total_cost,
                average_cost=position.average_cost,
            )
            for position in self.resolver.wa_tracker.positions()
        ]

    def _process_trade(self, raw_trade: KrakenTrade | Mapping[str, Any], trade_id: str) -> None:
        trade = raw_trade if isinstance(raw_trade, KrakenTrade) else KrakenTrade.model_validate(raw_trade)
        timestamp = trade.timestamp

        volume = _parse_decimal(trade.vol, "vol")
        price = _parse_decimal(trade.price, "price")
        cost = _parse_decimal(trade.cost, "cost")
        fee = _parse_decimal(trade.fee, "fee")
        if volume == 0:
            raise RecordValidationError("Invalid vol: trade volume must be > 0")

        base, quote = parse_pair(trade.pair)
        asset = normalize_asset(base)
        quote_asset = normalize_asset(quote)

        is_margin = trade.margin is not None and _parse_decimal(trade.margin, "margin") > 0
        transaction_type = TransactionType.MARGIN_TRADE if is_margin else TransactionType.TRADE

        transaction = ProcessedTransaction(
            id=TransactionId(f"trade_{trade_id}"),
            source_ref_id=trade_id,
            order_id=trade.ordertxid or None,
            type=transaction_type,
            category=categorize_transaction(transaction_type, trade.type),
            asset=asset,
            amount=volume if trade.type == TradeSide.BUY else -volume,
            pair=trade.pair,
            side=trade.type,
            price=price,
            cost=cost,
            fee=fee,
            fee_asset=quote_asset,
            leverage=trade.leverage,
            timestamp=timestamp,
        )

        quote_warning: str | None = None
        if quote_asset != REPORTING_CURRENCY and is_reportable_asset(asset):
            quote_warning = (
                f"{trade.pair} is quoted in {quote_asset}: cost and fee were read as {REPORTING_CURRENCY} "
                f"and the {quote_asset} side was not tracked - convert these trades to {REPORTING_CURRENCY} manually"
            )

        tax_event: TaxEvent | None = None
        if is_reportable_asset(asset):
            if trade.type == TradeSide.BUY:
                # Acquisition fees are part of the cost basis.
                self.resolver.record_acquisition(asset, volume, cost + fee, timestamp, transaction.id)
            elif timestamp.year <= self.tax_year:
                result = self.resolver.resolve_disposal(self.cost_basis_method, asset, volume, cost - fee, timestamp)
                # Earlier years only shrink the holdings; their gains were declared back then.
                if timestamp.year == self.tax_year:
                    tax_event = self._disposal_event(transaction, result, fee, [quote_warning] if quote_warning else [])

        self._transactions.append(transaction)
        if tax_event is not None:
            self._tax_events.append(tax_event)
        if quote_warning is not None:
            self._warnings.append(quote_warning)

    def _process_ledger(self, raw_entry: KrakenLedgerEntry | Mapping[str, Any], ledger_id: str) -> None:
        entry = raw_entry if isinstance(raw_entry, KrakenLedgerEntry) else KrakenLedgerEntry.model_validate(raw_entry)
        timestamp = entry.timestamp

        asset = normalize_asset(entry.asset)
        amount = _parse_decimal(entry.amount, "amount", allow_negative=True)
        fee = _parse_decimal(entry.fee, "fee")

        transaction_type, category = classify(entry.type, entry.subtype, amount=amount)
        transaction = ProcessedTransaction(
            id=TransactionId(f"ledger_{ledger_id}"),
            source_ref_id=entry.refid,
            type=transaction_type,
            category=category,
            asset=asset,
            amount=amount,
            fee=fee if fee > 0 else None,
            fee_asset=asset,
            timestamp=timestamp,
        )
        self._transactions.append(transaction)

        if not is_reportable_asset(asset) or amount <= 0:
            return

        if transaction_type == TransactionType.DEPOSIT:
            self.resolver.record_acquisition(asset, amount, Decimal(0), timestamp, transaction.id)
            self._warnings.append(
                f"{asset} deposits were recorded at zero cost basis; if they were bought elsewhere, "
                "their gains will be taxed twice unless the original cost is supplied"
            )
        elif transaction_type in INCOME_TYPES:
            # Income is held from receipt; its value has to come from outside.
            self.resolver.record_acquisition(asset, amount, Decimal(0), timestamp, transaction.id)
            if timestamp.year == self.tax_year:
                self._tax_events.append(self._income_event(transaction))

    def _disposal_event(
        self, transaction: ProcessedTransaction, result: DisposalResult, fee: Decimal, warnings: list[str]
    ) -> TaxEvent:
        matched_lots = result.matched_lots or []
        acquisition_date = matched_lots[0].acquisition_date if matched_lots else transaction.timestamp

        if result.total_cost_basis == 0 and result.disposal_proceeds > 0:
            warnings.append(NO_COST_BASIS_WARNING)
        elif result.unmatched_amount > 0:
            matched_amount = result.disposal_amount - result.unmatched_amount
            warnings.append(
                f"Only {matched_amount} of {result.disposal_amount} {result.asset} matched prior acquisitions; "
                f"the remaining {result.unmatched_amount} was treated as zero cost"
            )

        if result.gain < 0 and matched_lots:
            shortest_holding = min(match.holding_period_days for match in matched_lots)
            if shortest_holding < self.short_holding_days:
                warnings.append(
                    f"Loss on {result.asset} realized after holding {shortest_holding} day(s); "
                    "short-term losses may be challenged as wash sales"
                )

        return TaxEvent(
            transaction_id=transaction.id,
            tax_year=self.tax_year,
            type=transaction.type,
            asset=result.asset,
            amount=result.disposal_amount,
            acquisition_date=acquisition_date,
            acquisition_cost=result.total_cost_basis,
            disposal_date=transaction.timestamp,
            disposal_proceeds=result.disposal_proceeds,
            gain=result.gain,
            # Only gains are taxable in Estonia.
            taxable_amount=max(result.gain, Decimal(0)),
            cost_basis_method=self.cost_basis_method,
            matched_lots=result.matched_lots,
            fee=fee if fee > 0 else None,
            warnings=warnings,
        )

    def _income_event(self, transaction: ProcessedTransaction) -> TaxEvent:
        return TaxEvent(
            transaction_id=transaction.id,
            tax_year=self.tax_year,
            type=transaction.type,
            asset=AssetId(transaction.asset),
            amount=transaction.amount,
            acquisition_date=transaction.timestamp,
            acquisition_cost=Decimal(0),
            disposal_date=transaction.timestamp,
            disposal_proceeds=Decimal(0),
            gain=Decimal(0),
            taxable_amount=Decimal(0),
            cost_basis_method=self.cost_basis_method,
            warnings=[
                f"Fair market value at receipt is required for {transaction.amount} {transaction.asset} "
                f"({transaction.type}); income is recorded as 0 until it is supplied"
            ],
        )

    def _record_error(self, record_id: str, err: Exception) -> None:
        logger.warning("Skipping record %s: %s", record_id, err)
        self._errors.append(RecordError(id=record_id, error=str(err) or type(err).__name__))

    @staticmethod
    def _record_time(record: KrakenTrade | KrakenLedgerEntry | Mapping[str, Any]) -> float:
        raw_time = record.time if isinstance(record, (KrakenTrade, KrakenLedgerEntry)) else record.get("time", 0)
        try:
            value = float(raw_time)
        except (TypeError, ValueError):
            value = 0.0
        # Invalid timestamps sort first and surface as a record error when processed.
        return value if math.isfinite(value) else 0.0

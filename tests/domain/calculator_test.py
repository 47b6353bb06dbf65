from __future__ import annotations

from decimal import Decimal

from domain.calculator import NO_COST_BASIS_WARNING, TaxCalculator
from domain.disposal import OverDisposalPolicy
from domain.ledger import AccountType, CostBasisMethod, TradeSide, TransactionCategory, TransactionType
from domain.records import KrakenTrade
from tests.constants import BTC, DOT, TAX_YEAR
from tests.helpers.records import make_ledger_entry, make_trade
from tests.helpers.time_utils import ts


def _btc_scenario() -> dict[str, dict[str, object]]:
    return {
        "T1": make_trade("buy", "1.0", "29900", fee="100", timestamp=ts(2024, 1, 1)),
        "T2": make_trade("buy", "1.0", "40000", timestamp=ts(2024, 3, 1)),
        "T3": make_trade("sell", "1.0", "45000", fee="200", timestamp=ts(2024, 6, 1)),
    }


def test_fifo_sell_matches_first_lot(calculator: TaxCalculator) -> None:
    result = calculator.process(_btc_scenario())

    assert result.errors == []
    assert len(result.tax_events) == 1
    event = result.tax_events[0]
    assert event.asset == BTC
    assert event.type == TransactionType.TRADE
    assert event.transaction_id == "trade_T3"
    assert event.disposal_proceeds == Decimal(44800)
    assert event.acquisition_cost == Decimal(30000)
    assert event.acquisition_date == ts(2024, 1, 1)
    assert event.gain == Decimal(14800)
    assert event.taxable_amount == Decimal(14800)
    assert event.fee == Decimal(200)
    assert event.matched_lots is not None
    assert event.matched_lots[0].holding_period_days == 152
    assert event.warnings == []

    summary = result.summary
    assert summary.taxable_amount == Decimal(14800)
    assert summary.estimated_tax == Decimal(14800) * Decimal("0.22")
    assert summary.total_transactions == 3
    assert summary.total_trading_fees == Decimal(300)


def test_weighted_average_sell_uses_average_cost() -> None:
    calculator = TaxCalculator(TAX_YEAR, cost_basis_method=CostBasisMethod.WEIGHTED_AVERAGE)

    result = calculator.process(_btc_scenario())

    event = result.tax_events[0]
    assert event.acquisition_cost == Decimal(35000)
    assert event.gain == Decimal(9800)
    assert event.matched_lots is None
    assert event.cost_basis_method == CostBasisMethod.WEIGHTED_AVERAGE
    assert result.summary.cost_basis_method == CostBasisMethod.WEIGHTED_AVERAGE


def test_sell_without_acquisition_has_no_cost_basis(calculator: TaxCalculator) -> None:
    result = calculator.process({"T1": make_trade("sell", "0.5", "15000", timestamp=ts(2024, 5, 1))})

    event = result.tax_events[0]
    assert event.acquisition_cost == Decimal(0)
    assert event.gain == event.disposal_proceeds == Decimal(15000)
    assert event.acquisition_date == event.disposal_date
    assert NO_COST_BASIS_WARNING in event.warnings
    assert "1 disposal(s) had no cost basis - full proceeds treated as gain" in result.summary.warnings


def test_partial_match_is_flagged(calculator: TaxCalculator) -> None:
    trades = {
        "T1": make_trade("buy", "0.5", "10000", timestamp=ts(2024, 1, 1)),
        "T2": make_trade("sell", "1", "40000", timestamp=ts(2024, 5, 1)),
    }

    result = calculator.process(trades)

    event = result.tax_events[0]
    assert event.acquisition_cost == Decimal(10000)
    assert event.gain == Decimal(30000)
    assert any("the remaining 0.5 was treated as zero cost" in warning for warning in event.warnings)


def test_reject_policy_turns_over_disposal_into_record_error() -> None:
    calculator = TaxCalculator(TAX_YEAR, over_disposal_policy=OverDisposalPolicy.REJECT)
    trades = {
        "T1": make_trade("buy", "0.5", "10000", timestamp=ts(2024, 1, 1)),
        "T2": make_trade("sell", "1", "40000", timestamp=ts(2024, 5, 1)),
    }

    result = calculator.process(trades)

    assert result.tax_events == []
    assert [error.id for error in result.errors] == ["T2"]
    assert calculator.resolver.available(CostBasisMethod.FIFO, BTC) == Decimal("0.5")


def test_short_holding_loss_is_flagged(calculator: TaxCalculator) -> None:
    trades = {
        "T1": make_trade("buy", "1", "40000", timestamp=ts(2024, 5, 1)),
        "T2": make_trade("sell", "1", "35000", timestamp=ts(2024, 5, 11)),
    }

    result = calculator.process(trades)

    event = result.tax_events[0]
    assert event.gain == Decimal(-5000)
    assert event.taxable_amount == Decimal(0)
    assert any("after holding 10 day(s)" in warning for warning in event.warnings)
    assert result.summary.taxable_amount == Decimal(0)
    assert "5000.00 EUR in losses cannot be deducted (Estonian individual tax rules)" in result.summary.warnings


def test_invalid_records_are_reported_and_skipped(calculator: TaxCalculator) -> None:
    trades = {
        "BAD_VOL": make_trade("buy", "1", "100", timestamp=ts(2024, 1, 1)) | {"vol": "abc"},
        "ZERO_VOL": make_trade("buy", "1", "100", timestamp=ts(2024, 1, 2)) | {"vol": "0"},
        "NEG_FEE": make_trade("buy", "1", "100", fee="-1", timestamp=ts(2024, 1, 3)),
        "BAD_SIDE": make_trade("hold", "1", "100", timestamp=ts(2024, 1, 4)),
        "GOOD": make_trade("buy", "1", "30000", timestamp=ts(2024, 1, 5)),
    }
    ledger = {
        "NAN": make_ledger_entry("staking", "DOT", "NaN", timestamp=ts(2024, 1, 6)),
    }

    result = calculator.process(trades, ledger)

    assert [error.id for error in result.errors] == ["BAD_VOL", "ZERO_VOL", "NEG_FEE", "BAD_SIDE", "NAN"]
    assert all(error.error for error in result.errors)
    assert [transaction.id for transaction in result.transactions] == ["trade_GOOD"]
    assert calculator.resolver.available(CostBasisMethod.FIFO, BTC) == Decimal(1)


def test_records_are_processed_in_time_order(calculator: TaxCalculator) -> None:
    trades = {
        "SELL": make_trade("sell", "1", "45000", timestamp=ts(2024, 6, 1)),
        "BUY": make_trade("buy", "1", "30000", timestamp=ts(2024, 1, 1)),
    }

    result = calculator.process(trades)

    assert [transaction.id for transaction in result.transactions] == ["trade_BUY", "trade_SELL"]
    assert result.tax_events[0].gain == Decimal(15000)


def test_only_tax_year_disposals_become_events(calculator: TaxCalculator) -> None:
    trades = {
        "T1": make_trade("buy", "1", "10000", timestamp=ts(2022, 1, 1)),
        "T2": make_trade("buy", "1", "20000", timestamp=ts(2023, 1, 1)),
        "T3": make_trade("sell", "1", "15000", timestamp=ts(2023, 6, 1)),
        "T4": make_trade("sell", "1", "50000", timestamp=ts(2024, 6, 1)),
        "T5": make_trade("buy", "1", "60000", timestamp=ts(2025, 1, 1)),
    }

    result = calculator.process(trades)

    assert [event.transaction_id for event in result.tax_events] == ["trade_T4"]
    # The 2023 sell used the 2022 lot, so 2024 matches the 2023 lot.
    assert result.tax_events[0].acquisition_cost == Decimal(20000)
    assert result.summary.total_transactions == 1
    assert len(result.transactions) == 5


def test_trade_transaction_fields(calculator: TaxCalculator) -> None:
    trade = KrakenTrade.model_validate(
        make_trade("SELL", "0.25", "1000", fee="2.5", pair="XETHZEUR", timestamp=ts(2024, 2, 1))
        | {"ordertxid": "OABC"}
    )

    calculator.process_trade(trade, "TX1")
    transaction = calculator.results().transactions[0]

    assert transaction.id == "trade_TX1"
    assert transaction.source_ref_id == "TX1"
    assert transaction.order_id == "OABC"
    assert transaction.asset == "ETH"
    assert transaction.amount == Decimal("-0.25")
    assert transaction.side == TradeSide.SELL
    assert transaction.fee_asset == "EUR"
    assert transaction.category == TransactionCategory.TAXABLE_INCOME


def test_margin_trade_is_classified_and_bucketed(calculator: TaxCalculator) -> None:
    trades = {
        "T1": make_trade("buy", "1", "30000", margin="6000", timestamp=ts(2024, 1, 1)),
        "T2": make_trade("sell", "1", "33000", fee="10", margin="6600", timestamp=ts(2024, 2, 1)),
    }

    result = calculator.process(trades)

    assert {transaction.type for transaction in result.transactions} == {TransactionType.MARGIN_TRADE}
    assert result.summary.margin_gains == Decimal(2990)
    assert result.summary.total_margin_fees == Decimal(10)
    assert result.summary.trading_gains == Decimal(0)


def test_fiat_trades_are_recorded_but_not_taxed(calculator: TaxCalculator) -> None:
    result = calculator.process({"T1": make_trade("sell", "100", "92", pair="USDEUR", timestamp=ts(2024, 1, 1))})

    assert len(result.transactions) == 1
    assert result.tax_events == []


def test_deposit_is_zero_cost_acquisition_with_warning(calculator: TaxCalculator) -> None:
    ledger = {"L1": make_ledger_entry("deposit", "XXBT", "1", timestamp=ts(2024, 1, 1))}
    trades = {"T1": make_trade("sell", "1", "40000", timestamp=ts(2024, 2, 1))}

    result = calculator.process(trades, ledger)

    event = result.tax_events[0]
    assert event.acquisition_cost == Decimal(0)
    assert event.gain == Decimal(40000)
    assert event.matched_lots is not None and len(event.matched_lots) == 1
    assert any("BTC deposits were recorded at zero cost basis" in warning for warning in result.summary.warnings)


def test_fiat_deposit_creates_no_lot(calculator: TaxCalculator) -> None:
    calculator.process(ledger={"L1": make_ledger_entry("deposit", "ZEUR", "1000", timestamp=ts(2024, 1, 1))})

    assert calculator.holdings_summary() == []


def test_staking_reward_creates_placeholder_event(calculator: TaxCalculator) -> None:
    ledger = {
        "L1": make_ledger_entry("staking", "DOT.S", "0.5", timestamp=ts(2023, 12, 1)),
        "L2": make_ledger_entry("staking", "DOT.S", "0.25", timestamp=ts(2024, 3, 1)),
    }

    result = calculator.process(ledger=ledger)

    assert len(result.tax_events) == 1
    event = result.tax_events[0]
    assert event.type == TransactionType.STAKING_REWARD
    assert event.asset == DOT
    assert event.gain == Decimal(0)
    assert event.taxable_amount == Decimal(0)
    assert "Fair market value at receipt is required" in event.warnings[0]
    assert "1 staking reward(s) have no fair market value - manual calculation needed" in result.summary.warnings

    holdings = calculator.holdings_summary()
    assert [(holding.asset, holding.amount) for holding in holdings] == [(DOT, Decimal("0.75"))]


def test_staking_transfers_are_not_income(calculator: TaxCalculator) -> None:
    ledger = {
        "L1": make_ledger_entry("transfer", "DOT", "-1", subtype="spottostaking", timestamp=ts(2024, 1, 1)),
        "L2": make_ledger_entry("transfer", "DOT.S", "1", subtype="stakingfromspot", timestamp=ts(2024, 1, 1)),
    }

    result = calculator.process(ledger=ledger)

    assert [transaction.type for transaction in result.transactions] == [TransactionType.STAKING_DEPOSIT] * 2
    assert result.tax_events == []


def test_business_account_uses_prior_carryforward() -> None:
    calculator = TaxCalculator(
        2025,
        account_type=AccountType.BUSINESS,
        prior_loss_carryforward=Decimal(1000),
    )
    trades = {
        "T1": make_trade("buy", "1", "10000", timestamp=ts(2025, 1, 1)),
        "T2": make_trade("sell", "1", "11500", timestamp=ts(2025, 2, 1)),
    }

    summary = calculator.process(trades).summary

    assert summary.account_type == AccountType.BUSINESS
    assert summary.net_pnl == Decimal(1500)
    assert summary.retained_profit == Decimal(500)
    assert summary.loss_carryforward == Decimal(0)
    assert summary.taxable_amount == Decimal(0)


def test_holdings_follow_active_method() -> None:
    fifo = TaxCalculator(TAX_YEAR)
    average = TaxCalculator(TAX_YEAR, cost_basis_method=CostBasisMethod.WEIGHTED_AVERAGE)
    trades = _btc_scenario()

    fifo.process(trades)
    average.process(trades)

    assert fifo.holdings_summary()[0].cost_basis == Decimal(40000)
    assert average.holdings_summary()[0].cost_basis == Decimal(35000)


def test_trade_fee_is_counted_once_with_its_ledger_legs(calculator: TaxCalculator) -> None:
    bought_at = ts(2024, 1, 1)
    trades = {"T1": make_trade("buy", "1", "30000", fee="60", timestamp=bought_at)}
    ledger = {
        "L1": make_ledger_entry("trade", "XXBT", "1", refid="T1", timestamp=bought_at),
        "L2": make_ledger_entry("trade", "ZEUR", "-30000", fee="60", refid="T1", timestamp=bought_at),
    }

    result = calculator.process(trades, ledger)

    assert len(result.transactions) == 3
    assert result.summary.total_trading_fees == Decimal(60)
    assert result.summary.total_transactions == 1
    assert calculator.holdings_summary()[0].cost_basis == Decimal(30060)


def test_ledger_only_trade_fee_is_counted(calculator: TaxCalculator) -> None:
    ledger = {"L1": make_ledger_entry("trade", "ZEUR", "-30000", fee="60", refid="T1", timestamp=ts(2024, 1, 1))}

    result = calculator.process(ledger=ledger)

    assert result.summary.total_trading_fees == Decimal(60)
    assert result.summary.total_transactions == 1


def test_trade_quoted_outside_eur_is_flagged(calculator: TaxCalculator) -> None:
    trades = {
        "T1": make_trade("buy", "1", "2000", pair="XETHZEUR", timestamp=ts(2024, 1, 1)),
        "T2": make_trade("sell", "1", "0.05", pair="XETHXXBT", timestamp=ts(2024, 2, 1)),
    }

    result = calculator.process(trades)

    event = result.tax_events[0]
    assert event.disposal_proceeds == Decimal("0.05")
    assert len(event.warnings) == 1
    assert event.warnings[0].startswith("XETHXXBT is quoted in BTC")
    assert event.warnings[0] in result.summary.warnings
    assert result.summary.total_trading_fees == Decimal(0)


def test_buy_quoted_outside_eur_warns_in_summary(calculator: TaxCalculator) -> None:
    result = calculator.process({"T1": make_trade("buy", "1", "2100", fee="3", pair="XETHZUSD")})

    assert result.tax_events == []
    assert any(warning.startswith("XETHZUSD is quoted in USD") for warning in result.summary.warnings)
    # USD fees have no EUR value.
    assert result.summary.total_trading_fees == Decimal(0)

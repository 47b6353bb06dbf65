from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from db.repositories import ProcessedTransactionRepository, TaxEventRepository
from domain.ledger import (
    CostBasisMethod,
    LotId,
    MatchedLot,
    ProcessedTransaction,
    TradeSide,
    TransactionCategory,
    TransactionId,
    TransactionType,
)
from domain.tax_event import TaxEvent
from tests.constants import BTC, DOT, EUR


def _sample_transaction(transaction_id: str, timestamp: datetime) -> ProcessedTransaction:
    return ProcessedTransaction(
        id=TransactionId(transaction_id),
        source_ref_id=transaction_id.removeprefix("trade_"),
        order_id="O-1",
        type=TransactionType.TRADE,
        category=TransactionCategory.TAXABLE_INCOME,
        asset=BTC,
        amount=Decimal("-0.5"),
        pair="XXBTZEUR",
        side=TradeSide.SELL,
        price=Decimal("40000.1"),
        cost=Decimal("20000.05"),
        fee=Decimal("32.00"),
        fee_asset=EUR,
        timestamp=timestamp,
    )


def _sample_event(tax_year: int, gain: Decimal, *, with_lots: bool = True) -> TaxEvent:
    when = datetime(tax_year, 6, 1, tzinfo=timezone.utc)
    acquired = datetime(tax_year, 1, 1, tzinfo=timezone.utc)
    cost = Decimal(10000)
    matched_lots = [
        MatchedLot(
            lot_id=LotId(uuid4()),
            amount=Decimal("0.25"),
            cost_basis=Decimal(4000),
            acquisition_date=acquired,
            holding_period_days=152,
        ),
        MatchedLot(
            lot_id=LotId(uuid4()),
            amount=Decimal("0.25"),
            cost_basis=Decimal(6000),
            acquisition_date=when,
            holding_period_days=0,
        ),
    ]
    return TaxEvent(
        transaction_id=TransactionId("trade_T1"),
        tax_year=tax_year,
        type=TransactionType.TRADE,
        asset=BTC,
        amount=Decimal("0.5"),
        acquisition_date=acquired,
        acquisition_cost=cost,
        disposal_date=when,
        disposal_proceeds=cost + gain,
        gain=gain,
        taxable_amount=max(gain, Decimal(0)),
        cost_basis_method=CostBasisMethod.FIFO,
        matched_lots=matched_lots if with_lots else None,
        fee=Decimal("1.5"),
        warnings=["first", "second"],
    )


@pytest.fixture()
def transaction_repo(test_session: Session) -> ProcessedTransactionRepository:
    return ProcessedTransactionRepository(test_session)


@pytest.fixture()
def event_repo(test_session: Session) -> TaxEventRepository:
    return TaxEventRepository(test_session)


def test_create_and_list_transactions(transaction_repo: ProcessedTransactionRepository) -> None:
    later = _sample_transaction("trade_T2", datetime(2024, 2, 1, tzinfo=timezone.utc))
    earlier = _sample_transaction("trade_T1", datetime(2023, 2, 1, tzinfo=timezone.utc))

    transaction_repo.create_many([later, earlier])

    assert transaction_repo.list() == [earlier, later]
    assert transaction_repo.list(tax_year=2024) == [later]
    assert transaction_repo.get("trade_T1") == earlier
    assert transaction_repo.get("missing") is None


def test_transactions_are_replaced_on_reimport(transaction_repo: ProcessedTransactionRepository) -> None:
    transaction = _sample_transaction("trade_T1", datetime(2024, 2, 1, tzinfo=timezone.utc))
    transaction_repo.create_many([transaction])

    updated = transaction.model_copy(update={"fee": Decimal("1")})
    transaction_repo.create_many([updated])

    stored = transaction_repo.list()
    assert len(stored) == 1
    assert stored[0].fee == Decimal("1")


def test_tax_events_round_trip_with_matched_lots(event_repo: TaxEventRepository) -> None:
    event = _sample_event(2024, Decimal(2500))

    event_repo.create_many([event])
    stored = event_repo.list(tax_year=2024)

    assert stored == [event]
    assert stored[0].disposal_date.tzinfo is not None
    assert stored[0].matched_lots is not None
    assert [match.cost_basis for match in stored[0].matched_lots] == [Decimal(4000), Decimal(6000)]


def test_weighted_average_event_keeps_no_matched_lots(event_repo: TaxEventRepository) -> None:
    event = _sample_event(2024, Decimal(100), with_lots=False).model_copy(
        update={"cost_basis_method": CostBasisMethod.WEIGHTED_AVERAGE, "type": TransactionType.STAKING_REWARD}
    )

    event_repo.create_many([event])

    stored = event_repo.list()[0]
    assert stored.matched_lots is None
    assert stored.asset == BTC
    assert stored.type == TransactionType.STAKING_REWARD


def test_replace_year_only_touches_that_year(event_repo: TaxEventRepository) -> None:
    event_repo.create_many([_sample_event(2023, Decimal(-100)), _sample_event(2024, Decimal(200))])

    replacement = _sample_event(2024, Decimal(300)).model_copy(update={"asset": DOT})
    event_repo.replace_year(2024, [replacement])

    assert [event.gain for event in event_repo.list(tax_year=2023)] == [Decimal(-100)]
    assert [event.asset for event in event_repo.list(tax_year=2024)] == [DOT]


def test_prior_loss_carryforward_chains_stored_years(event_repo: TaxEventRepository) -> None:
    event_repo.create_many(
        [
            _sample_event(2022, Decimal(-1000)),
            _sample_event(2023, Decimal(-500)),
            _sample_event(2023, Decimal(800)),
            _sample_event(2025, Decimal(-9999)),
        ]
    )

    assert event_repo.net_pnl_by_year() == {2022: Decimal(-1000), 2023: Decimal(300), 2025: Decimal(-9999)}
    assert event_repo.prior_loss_carryforward(2024) == Decimal(700)
    assert event_repo.prior_loss_carryforward(2022) == Decimal(0)

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db import models
from domain.ledger import (
    AssetId,
    CostBasisMethod,
    LotId,
    MatchedLot,
    ProcessedTransaction,
    TradeSide,
    TransactionCategory,
    TransactionId,
    TransactionType,
)
from domain.tax_event import TaxEvent, TaxEventId
from domain.tax_summary import chain_loss_carryforward


def _utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ProcessedTransactionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_many(self, transactions: Iterable[ProcessedTransaction]) -> None:
        for transaction in transactions:
            # Re-imports of the same Kraken record replace the earlier row.
            self._session.merge(self._to_orm(transaction))
        self._session.commit()

    def get(self, transaction_id: str) -> ProcessedTransaction | None:
        orm_transaction = self._session.get(models.ProcessedTransactionOrm, transaction_id)
        if orm_transaction is None:
            return None
        return self._to_domain(orm_transaction)

    def list(self, *, tax_year: int | None = None) -> list[ProcessedTransaction]:
        query = select(models.ProcessedTransactionOrm).order_by(models.ProcessedTransactionOrm.timestamp.asc())
        transactions = [self._to_domain(row) for row in self._session.scalars(query)]
        if tax_year is None:
            return transactions
        return [transaction for transaction in transactions if transaction.timestamp.year == tax_year]

    @staticmethod
    def _to_orm(transaction: ProcessedTransaction) -> models.ProcessedTransactionOrm:
        return models.ProcessedTransactionOrm(
            id=transaction.id,
            source_ref_id=transaction.source_ref_id,
            order_id=transaction.order_id,
            type=transaction.type.value,
            category=transaction.category.value,
            asset=transaction.asset,
            amount=transaction.amount,
            pair=transaction.pair,
            side=transaction.side.value if transaction.side is not None else None,
            price=transaction.price,
            cost=transaction.cost,
            fee=transaction.fee,
            fee_asset=transaction.fee_asset,
            leverage=transaction.leverage,
            timestamp=transaction.timestamp,
        )

    @staticmethod
    def _to_domain(orm_transaction: models.ProcessedTransactionOrm) -> ProcessedTransaction:
        return ProcessedTransaction(
            id=TransactionId(orm_transaction.id),
            source_ref_id=orm_transaction.source_ref_id,
            order_id=orm_transaction.order_id,
            type=TransactionType(orm_transaction.type),
            category=TransactionCategory(orm_transaction.category),
            asset=AssetId(orm_transaction.asset),
            amount=orm_transaction.amount,
            pair=orm_transaction.pair,
            side=TradeSide(orm_transaction.side) if orm_transaction.side is not None else None,
            price=orm_transaction.price,
            cost=orm_transaction.cost,
            fee=orm_transaction.fee,
            fee_asset=AssetId(orm_transaction.fee_asset) if orm_transaction.fee_asset is not None else None,
            leverage=orm_transaction.leverage,
            timestamp=_utc(orm_transaction.timestamp),
        )


class TaxEventRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_many(self, tax_events: Iterable[TaxEvent]) -> None:
        self._session.add_all(self._to_orm(event) for event in tax_events)
        self._session.commit()

    def replace_year(self, tax_year: int, tax_events: Iterable[TaxEvent]) -> None:
        """Drop stored events of `tax_year` and store the new ones in one commit."""
        stale_ids = select(models.TaxEventOrm.id).where(models.TaxEventOrm.tax_year == tax_year)
        self._session.execute(delete(models.MatchedLotOrm).where(models.MatchedLotOrm.tax_event_id.in_(stale_ids)))
        self._session.execute(delete(models.TaxEventOrm).where(models.TaxEventOrm.tax_year == tax_year))
        self._session.add_all(self._to_orm(event) for event in tax_events)
        self._session.commit()

    def list(self, *, tax_year: int | None = None) -> list[TaxEvent]:
        query = select(models.TaxEventOrm).order_by(models.TaxEventOrm.disposal_date.asc())
        if tax_year is not None:
            query = query.where(models.TaxEventOrm.tax_year == tax_year)
        return [self._to_domain(row) for row in self._session.scalars(query)]

    def net_pnl_by_year(self) -> dict[int, Decimal]:
        totals: dict[int, Decimal] = defaultdict(lambda: Decimal(0))
        for tax_year, gain in self._session.execute(select(models.TaxEventOrm.tax_year, models.TaxEventOrm.gain)):
            totals[tax_year] += gain
        return dict(totals)

    def prior_loss_carryforward(self, tax_year: int) -> Decimal:
        return chain_loss_carryforward(self.net_pnl_by_year(), tax_year)

    @staticmethod
    def _to_orm(event: TaxEvent) -> models.TaxEventOrm:
        orm_event = models.TaxEventOrm(
            id=event.id,
            transaction_id=event.transaction_id,
            tax_year=event.tax_year,
            type=event.type.value,
            asset=event.asset,
            amount=event.amount,
            acquisition_date=event.acquisition_date,
            acquisition_cost=event.acquisition_cost,
            disposal_date=event.disposal_date,
            disposal_proceeds=event.disposal_proceeds,
            gain=event.gain,
            taxable_amount=event.taxable_amount,
            cost_basis_method=event.cost_basis_method.value,
            fee=event.fee,
            has_matched_lots=event.matched_lots is not None,
            warnings=list(event.warnings),
        )
        orm_event.matched_lots = [
            models.MatchedLotOrm(
                position=position,
                lot_id=match.lot_id,
                amount=match.amount,
                cost_basis=match.cost_basis,
                acquisition_date=match.acquisition_date,
                holding_period_days=match.holding_period_days,
            )
            for position, match in enumerate(event.matched_lots or [])
        ]
        return orm_event

    @staticmethod
    def _to_domain(orm_event: models.TaxEventOrm) -> TaxEvent:
        matched_lots = [
            MatchedLot(
                lot_id=LotId(match.lot_id),
                amount=match.amount,
                cost_basis=match.cost_basis,
                acquisition_date=_utc(match.acquisition_date),
                holding_period_days=match.holding_period_days,
            )
            for match in orm_event.matched_lots
        ]
        return TaxEvent(
            id=TaxEventId(orm_event.id),
            transaction_id=TransactionId(orm_event.transaction_id),
            tax_year=orm_event.tax_year,
            type=TransactionType(orm_event.type),
            asset=AssetId(orm_event.asset),
            amount=orm_event.amount,
            acquisition_date=_utc(orm_event.acquisition_date),
            acquisition_cost=orm_event.acquisition_cost,
            disposal_date=_utc(orm_event.disposal_date),
            disposal_proceeds=orm_event.disposal_proceeds,
            gain=orm_event.gain,
            taxable_amount=orm_event.taxable_amount,
            cost_basis_method=CostBasisMethod(orm_event.cost_basis_method),
            matched_lots=matched_lots if orm_event.has_matched_lots else None,
            fee=orm_event.fee,
            warnings=list(orm_event.warnings or []),
        )

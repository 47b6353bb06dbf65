from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class DecimalAsString(TypeDecorator):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class ProcessedTransactionOrm(Base):
    __tablename__ = "processed_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    source_ref_id: Mapped[str] = mapped_column(String, nullable=False)
    order_id: Mapped[str | None] = mapped_column(String, nullable=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    asset: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    pair: Mapped[str | None] = mapped_column(String, nullable=True)
    side: Mapped[str | None] = mapped_column(String, nullable=True)
    price: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    cost: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    fee: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    fee_asset: Mapped[str | None] = mapped_column(String, nullable=True)
    leverage: Mapped[str | None] = mapped_column(String, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TaxEventOrm(Base):
    __tablename__ = "tax_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    transaction_id: Mapped[str] = mapped_column(String, nullable=False)
    tax_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    asset: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    acquisition_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    acquisition_cost: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    disposal_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    disposal_proceeds: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    gain: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    cost_basis_method: Mapped[str] = mapped_column(String, nullable=False)
    fee: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    has_matched_lots: Mapped[bool] = mapped_column(default=False, nullable=False)
    warnings: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    matched_lots: Mapped[list["MatchedLotOrm"]] = relationship(
        cascade="all, delete-orphan", back_populates="tax_event", lazy="selectin", order_by="MatchedLotOrm.position"
    )


class MatchedLotOrm(Base):
    __tablename__ = "matched_lots"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tax_event_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tax_events.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    lot_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    cost_basis: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    acquisition_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    holding_period_days: Mapped[int] = mapped_column(Integer, nullable=False)

    tax_event: Mapped[TaxEventOrm] = relationship(back_populates="matched_lots")

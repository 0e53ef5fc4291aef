from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys.
BigIntId = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CountStatus(str, Enum):
    ACTIVE = 'active'
    EXCLUDED = 'excluded'


class IngestBatchStatus(str, Enum):
    COMPLETED = 'completed'
    NO_ITEMS = 'no_items'


class ComparisonStatus(str, Enum):
    PENDING = 'pending'
    EXPLAINED = 'explained'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class Store(Base):
    __tablename__ = 'stores'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StoreSetting(Base):
    __tablename__ = 'store_settings'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False, unique=True)
    diff_tolerance_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), default=Decimal('5'))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'
    __table_args__ = (UniqueConstraint('store_id', 'product_code', name='products_store_id_product_code_key'),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    product_code: Mapped[str] = mapped_column(Text, nullable=False)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    count_status: Mapped[CountStatus] = mapped_column(
        SQLEnum(CountStatus, name='product_count_status', values_callable=_enum_values),
        nullable=False,
        default=CountStatus.ACTIVE,
        server_default=CountStatus.ACTIVE.value,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ManualCount(Base):
    __tablename__ = 'manual_counts'
    __table_args__ = (Index('ix_manual_counts_store_date', 'store_id', 'count_date'),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    count_date: Mapped[date] = mapped_column(Date, nullable=False)
    product_code: Mapped[str] = mapped_column(Text, nullable=False)
    count_quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class IngestBatch(Base):
    __tablename__ = 'ingest_batches'
    __table_args__ = (Index('ix_ingest_batches_store_date', 'store_id', 'upload_date'),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    upload_date: Mapped[date] = mapped_column(Date, nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    status: Mapped[IngestBatchStatus] = mapped_column(
        SQLEnum(IngestBatchStatus, name='ingest_batch_status', values_callable=_enum_values),
        nullable=False,
    )
    upload_method: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class IngestItem(Base):
    __tablename__ = 'ingest_items'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    ingest_batch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('ingest_batches.id', ondelete='CASCADE'), nullable=False, index=True
    )
    product_code: Mapped[str | None] = mapped_column(Text)
    product_name: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)
    confidence: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('100'))
    status: Mapped[str] = mapped_column(Text, nullable=False, default='confirmed', server_default='confirmed')


class Comparison(Base):
    __tablename__ = 'comparisons'
    __table_args__ = (
        UniqueConstraint('store_id', 'comp_date', 'product_code', name='comparisons_store_date_code_key'),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    comp_date: Mapped[date] = mapped_column(Date, nullable=False)
    product_code: Mapped[str] = mapped_column(Text, nullable=False)
    product_name: Mapped[str | None] = mapped_column(Text)
    manual_quantity: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    pos_quantity: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    difference: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    diff_percent: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    status: Mapped[ComparisonStatus] = mapped_column(
        SQLEnum(ComparisonStatus, name='comparison_status', values_callable=_enum_values),
        nullable=False,
        default=ComparisonStatus.PENDING,
        server_default=ComparisonStatus.PENDING.value,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id'), index=True)
    action_type: Mapped[str] = mapped_column(Text, nullable=False)
    table_name: Mapped[str | None] = mapped_column(Text)
    record_id: Mapped[str | None] = mapped_column(Text)
    old_value: Mapped[dict | None] = mapped_column(JSON)
    new_value: Mapped[dict | None] = mapped_column(JSON)
    changed_by: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

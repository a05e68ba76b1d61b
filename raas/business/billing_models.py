"""
RaaS — Billing Data Model
=========================
SQLAlchemy ORM models for the Roof-as-a-Service billing platform.

Tables:
  distributors, installations, allocations, energy_readings,
  energy_ledger, upload_batches, invoices, aggregate_stats

Designed for PostgreSQL. Only portable column types are used, so the same
metadata also builds on SQLite for tests.

Periods are stored twice: the "MM/YYYY" label shown to users and an integer
period_key (YYYYMM) used for ordering and range queries.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import (
    CheckConstraint, Date, DateTime, Enum, ForeignKey, Index, Integer, Numeric,
    String, Text, UniqueConstraint, func, or_, select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship

from .ledger import InstallationType, LedgerRecord
from .periods import Period


def _uuid() -> str:
    return str(uuid.uuid4())


KWH = Numeric(16, 4)
MONEY = Numeric(14, 2)
INSTALLATION_TYPE = Enum(InstallationType, name="installation_type")


# ─────────────────────────────────────────────
# Base
# ─────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class InvoiceStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELED = "CANCELED"


class UploadStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class StatsPeriodType(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# ─────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────

class Distributor(Base):
    """Electricity distributor; its kWh rate is the base for invoicing."""
    __tablename__ = "distributors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    kwh_rate: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)
    default_discount: Mapped[Decimal | None] = mapped_column(Numeric(5, 4), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    installations: Mapped[List[Installation]] = relationship(back_populates="distributor")

    __table_args__ = (
        CheckConstraint("kwh_rate > 0", name="ck_distributor_rate_positive"),
    )

    def __repr__(self) -> str:
        return f"<Distributor id={self.id} name={self.name!r}>"


class Installation(Base):
    """A metered installation (distributor account) — a solar roof or a consumer."""
    __tablename__ = "installations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    installation_number: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False,
        comment="Meter / account number as printed by the distributor",
    )
    installation_type: Mapped[InstallationType] = mapped_column(
        INSTALLATION_TYPE, nullable=False,
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    distributor_id: Mapped[str | None] = mapped_column(ForeignKey("distributors.id"), nullable=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    distributor: Mapped[Optional[Distributor]] = relationship(back_populates="installations")

    __table_args__ = (
        Index("ix_installations_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Installation id={self.id} number={self.installation_number!r} "
            f"type={self.installation_type.value}>"
        )


class Allocation(Base):
    """Share (percent) of a generator's surplus assigned to a consumer."""
    __tablename__ = "allocations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    generator_id: Mapped[str] = mapped_column(ForeignKey("installations.id"), nullable=False)
    consumer_id: Mapped[str] = mapped_column(ForeignKey("installations.id"), nullable=False)
    quota: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )

    generator: Mapped[Installation] = relationship(foreign_keys=[generator_id])
    consumer: Mapped[Installation] = relationship(foreign_keys=[consumer_id])

    __table_args__ = (
        UniqueConstraint("generator_id", "consumer_id", name="uq_allocation_pair"),
        CheckConstraint("quota > 0 AND quota <= 100", name="ck_allocation_quota_range"),
        Index("ix_allocations_consumer", "consumer_id"),
    )

    def __repr__(self) -> str:
        return f"<Allocation {self.generator_id} → {self.consumer_id} {self.quota}%>"


class EnergyReading(Base):
    """Raw monthly consumption / generation as reported by the distributor."""
    __tablename__ = "energy_readings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    installation_id: Mapped[str] = mapped_column(ForeignKey("installations.id"), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    period_key: Mapped[int] = mapped_column(Integer, nullable=False)
    consumption: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    generation: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    upload_batch_id: Mapped[str | None] = mapped_column(
        ForeignKey("upload_batches.id"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("installation_id", "period_key", name="uq_reading_installation_period"),
        CheckConstraint("consumption >= 0 AND generation >= 0", name="ck_reading_non_negative"),
    )


class EnergyLedgerRecord(Base):
    """
    Posted ledger line. Append-only: one row per installation and month,
    never updated once written.
    """
    __tablename__ = "energy_ledger"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    installation_id: Mapped[str] = mapped_column(ForeignKey("installations.id"), nullable=False)
    installation_type: Mapped[InstallationType] = mapped_column(
        INSTALLATION_TYPE, nullable=False,
    )
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    period_key: Mapped[int] = mapped_column(Integer, nullable=False)
    consumption: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    generation: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    transferred: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    received: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    compensation: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    previous_balance: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    current_balance: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    expiring_balance_amount: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    expiring_balance_period: Mapped[str | None] = mapped_column(String(7), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("installation_id", "period_key", name="uq_ledger_installation_period"),
        CheckConstraint("current_balance >= 0", name="ck_ledger_balance_non_negative"),
        Index("ix_energy_ledger_period", "period_key"),
    )

    @classmethod
    def from_record(cls, record: LedgerRecord) -> EnergyLedgerRecord:
        return cls(
            installation_id=record.installation_id,
            installation_type=record.installation_type,
            period=str(record.period),
            period_key=record.period.key,
            consumption=record.consumption,
            generation=record.generation,
            transferred=record.transferred,
            received=record.received,
            compensation=record.compensation,
            previous_balance=record.previous_balance,
            current_balance=record.current_balance,
            expiring_balance_amount=record.expiring_balance_amount,
            expiring_balance_period=(
                str(record.expiring_balance_period) if record.expiring_balance_period else None
            ),
        )

    def __repr__(self) -> str:
        return f"<EnergyLedgerRecord {self.installation_id} {self.period} balance={self.current_balance}>"


class UploadBatch(Base):
    """One processed distributor report file."""
    __tablename__ = "upload_batches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    file_name: Mapped[str] = mapped_column(String(256), nullable=False)
    distributor_id: Mapped[str | None] = mapped_column(ForeignKey("distributors.id"), nullable=True)
    uploaded_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[UploadStatus] = mapped_column(
        Enum(UploadStatus, name="upload_status"), nullable=False, default=UploadStatus.PROCESSING,
    )
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    not_found_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    auto_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Invoice(Base):
    """Monthly RaaS invoice for the kWh compensated at a customer's installations."""
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    invoice_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    installation_id: Mapped[str | None] = mapped_column(ForeignKey("installations.id"), nullable=True)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    period_key: Mapped[int] = mapped_column(Integer, nullable=False)
    kwh_billed: Mapped[Decimal] = mapped_column(KWH, nullable=False)
    kwh_rate: Mapped[Decimal] = mapped_column(Numeric(10, 6), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, comment="Before discount")
    savings: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    co2_avoided_kg: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status"), nullable=False, default=InvoiceStatus.PENDING,
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_invoices_user_period", "user_id", "period_key"),
        Index("ix_invoices_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} status={self.status.value} amount={self.amount}>"


class AggregateStats(Base):
    """Platform-wide totals for one month, quarter or year. Upserted by the stats job."""
    __tablename__ = "aggregate_stats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    period_label: Mapped[str] = mapped_column(String(7), nullable=False)
    period_type: Mapped[StatsPeriodType] = mapped_column(
        Enum(StatsPeriodType, name="stats_period_type"), nullable=False,
    )
    total_generation: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    total_consumption: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    total_transferred: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    total_compensation: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    total_credits_generated: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    average_generation_per_generator: Mapped[Decimal] = mapped_column(KWH, nullable=False, default=Decimal("0"))
    estimated_savings: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    co2_reduction_kg: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False, default=Decimal("0"))
    active_generators: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_consumers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("period_label", "period_type", name="uq_aggregate_stats_period"),
    )


# ─────────────────────────────────────────────
# Query helpers
# ─────────────────────────────────────────────

def get_installation(session: Session, installation_id: str) -> Installation | None:
    return session.get(Installation, installation_id)


def get_installation_by_number(session: Session, number: str) -> Installation | None:
    q = select(Installation).where(Installation.installation_number == number)
    return session.execute(q).scalars().first()


def get_user_installation_ids(session: Session, user_id: str) -> List[str]:
    q = select(Installation.id).where(Installation.user_id == user_id)
    return list(session.execute(q).scalars().all())


def get_allocations_touching(session: Session, installation_ids: Iterable[str]) -> List[Allocation]:
    """Allocations where any of the installations is the generator or the consumer."""
    ids = list(installation_ids)
    if not ids:
        return []
    q = (
        select(Allocation)
        .where(or_(Allocation.generator_id.in_(ids), Allocation.consumer_id.in_(ids)))
        .order_by(Allocation.created_at, Allocation.id)
    )
    return list(session.execute(q).scalars().all())


def get_generator_quota_total(
    session: Session, generator_id: str, exclude_allocation_id: str | None = None,
) -> Decimal:
    """Sum of quotas already allocated from a generator, optionally ignoring one allocation."""
    q = select(Allocation.quota).where(Allocation.generator_id == generator_id)
    if exclude_allocation_id:
        q = q.where(Allocation.id != exclude_allocation_id)
    return sum(session.execute(q).scalars().all(), Decimal("0"))


def get_readings(
    session: Session, installation_ids: Iterable[str], first: Period, last: Period,
) -> List[EnergyReading]:
    """Readings in [first, last] for the given installations, ascending by period."""
    q = (
        select(EnergyReading)
        .where(
            EnergyReading.installation_id.in_(list(installation_ids)),
            EnergyReading.period_key >= first.key,
            EnergyReading.period_key <= last.key,
        )
        .order_by(EnergyReading.installation_id, EnergyReading.period_key)
    )
    return list(session.execute(q).scalars().all())


def get_last_ledger_record(
    session: Session, installation_id: str, before: Period | None = None,
) -> EnergyLedgerRecord | None:
    """Latest posted record for an installation, optionally strictly before a period."""
    q = select(EnergyLedgerRecord).where(EnergyLedgerRecord.installation_id == installation_id)
    if before is not None:
        q = q.where(EnergyLedgerRecord.period_key < before.key)
    q = q.order_by(EnergyLedgerRecord.period_key.desc()).limit(1)
    return session.execute(q).scalars().first()


def get_ledger_records(
    session: Session,
    installation_id: str,
    first: Period | None = None,
    last: Period | None = None,
) -> List[EnergyLedgerRecord]:
    """Posted records for one installation, ascending by period."""
    q = select(EnergyLedgerRecord).where(EnergyLedgerRecord.installation_id == installation_id)
    if first is not None:
        q = q.where(EnergyLedgerRecord.period_key >= first.key)
    if last is not None:
        q = q.where(EnergyLedgerRecord.period_key <= last.key)
    return list(session.execute(q.order_by(EnergyLedgerRecord.period_key)).scalars().all())


def get_ledger_records_for_periods(
    session: Session,
    periods: Iterable[Period],
    installation_ids: Iterable[str] | None = None,
) -> List[EnergyLedgerRecord]:
    keys = [p.key for p in periods]
    q = select(EnergyLedgerRecord).where(EnergyLedgerRecord.period_key.in_(keys))
    if installation_ids is not None:
        q = q.where(EnergyLedgerRecord.installation_id.in_(list(installation_ids)))
    return list(session.execute(q.order_by(EnergyLedgerRecord.period_key)).scalars().all())


def count_invoices_for_period(session: Session, period: Period) -> int:
    q = select(func.count(Invoice.id)).where(Invoice.period_key == period.key)
    return int(session.execute(q).scalar_one())

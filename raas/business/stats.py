"""
RaaS — Aggregate Statistics
===========================
Platform-wide totals per month, quarter and year, computed from posted
ledger records and upserted into aggregate_stats.

Generators contribute generation and transferred kWh; consumers contribute
consumption and compensation. Credits generated are the positive balance
movements of consumers (current − previous).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from .billing_models import (
    AggregateStats, EnergyLedgerRecord, StatsPeriodType, get_ledger_records_for_periods,
)
from .ledger import KWH_QUANT, ZERO, InstallationType
from .periods import Period, iter_back, months_of

logger = logging.getLogger("raas.stats")

CENTS = Decimal("0.01")

REFRESH_MONTHS = 24
REFRESH_YEARS = 5


@dataclass(frozen=True)
class StatsTotals:
    total_generation: Decimal = ZERO
    total_consumption: Decimal = ZERO
    total_transferred: Decimal = ZERO
    total_compensation: Decimal = ZERO
    total_credits_generated: Decimal = ZERO
    average_generation_per_generator: Decimal = ZERO
    estimated_savings: Decimal = ZERO
    co2_reduction_kg: Decimal = ZERO
    active_generators: int = 0
    active_consumers: int = 0


def aggregate(records: Iterable[EnergyLedgerRecord], kwh_price=None) -> StatsTotals:
    """Fold ledger records into platform totals."""
    price = Decimal(str(settings.DEFAULT_KWH_PRICE if kwh_price is None else kwh_price))
    generation = consumption = transferred = compensation = credits = ZERO
    generators, consumers = set(), set()

    for r in records:
        if r.installation_type == InstallationType.GENERATOR:
            generators.add(r.installation_id)
            generation += Decimal(str(r.generation))
            transferred += Decimal(str(r.transferred))
        else:
            consumers.add(r.installation_id)
            consumption += Decimal(str(r.consumption))
            compensation += Decimal(str(r.compensation))
            delta = Decimal(str(r.current_balance)) - Decimal(str(r.previous_balance))
            if delta > 0:
                credits += delta

    average = generation / len(generators) if generators else ZERO
    return StatsTotals(
        total_generation=generation,
        total_consumption=consumption,
        total_transferred=transferred,
        total_compensation=compensation,
        total_credits_generated=credits,
        average_generation_per_generator=average.quantize(KWH_QUANT, ROUND_HALF_UP),
        estimated_savings=(min(generation, consumption) * price).quantize(CENTS, ROUND_HALF_UP),
        co2_reduction_kg=(generation * Decimal(str(settings.KWH_TO_CO2_KG))).quantize(CENTS, ROUND_HALF_UP),
        active_generators=len(generators),
        active_consumers=len(consumers),
    )


def calculate_stats(
    session: Session,
    label: str,
    period_type: StatsPeriodType | str,
    kwh_price=None,
) -> Optional[AggregateStats]:
    """Compute and upsert one stats row. Returns None when the period has no data."""
    period_type = StatsPeriodType(period_type)
    months = months_of(label, period_type.value)
    records = get_ledger_records_for_periods(session, months)
    if not records:
        logger.warning("No ledger data for %s %s, skipping", period_type.value, label)
        return None

    totals = aggregate(records, kwh_price)
    row = session.execute(
        select(AggregateStats).where(
            AggregateStats.period_label == label, AggregateStats.period_type == period_type,
        )
    ).scalars().first()
    if row is None:
        row = AggregateStats(period_label=label, period_type=period_type)
        session.add(row)

    for name, value in asdict(totals).items():
        setattr(row, name, value)
    row.calculated_at = datetime.now(timezone.utc)
    session.flush()

    logger.info(
        "Stats %s %s: generation=%s compensation=%s (%d generators, %d consumers)",
        period_type.value, label, totals.total_generation, totals.total_compensation,
        totals.active_generators, totals.active_consumers,
    )
    return row


def refresh_labels(today: Optional[date] = None) -> List[tuple]:
    """(label, type) pairs covered by a full refresh, most recent first."""
    current = Period.from_date(today or date.today())
    labels = [(str(p), StatsPeriodType.MONTHLY) for p in iter_back(current, REFRESH_MONTHS)]
    for year in (current.year, current.year - 1):
        labels.extend((f"Q{q}/{year}", StatsPeriodType.QUARTERLY) for q in (4, 3, 2, 1))
    labels.extend(
        (str(current.year - i), StatsPeriodType.YEARLY) for i in range(REFRESH_YEARS)
    )
    return labels


def refresh_all(session: Session, today: Optional[date] = None, kwh_price=None) -> List[AggregateStats]:
    rows = []
    for label, period_type in refresh_labels(today):
        row = calculate_stats(session, label, period_type, kwh_price)
        if row is not None:
            rows.append(row)
    logger.info("Stats refresh complete: %d periods updated", len(rows))
    return rows


def get_stats(
    session: Session, period_type: StatsPeriodType | str | None = None,
) -> List[AggregateStats]:
    q = select(AggregateStats).order_by(AggregateStats.period_type, AggregateStats.period_label)
    if period_type is not None:
        q = q.where(AggregateStats.period_type == StatsPeriodType(period_type))
    return list(session.execute(q).scalars().all())

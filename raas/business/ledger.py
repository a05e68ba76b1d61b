"""
RaaS — Energy Credit Ledger
============================
Monthly kWh credit ledger for generator pools.

A generator installation shares the surplus of its monthly generation with
the consumer installations allocated to it. Each consumer receives its quota
fraction of that surplus, offsets its own consumption with it (plus any credit
carried from earlier months), and carries whatever is left to the next month.
Carried credit is marked to expire CREDIT_EXPIRY_MONTHS after the month it
was left over.

Steps per period:
  1. Generator:  transferred = max(0, generation − consumption)
  2. Consumer:   received    = Σ transferred × quota
                 available   = previous_balance + received
                 compensation = min(consumption, available)
                 current_balance = available − compensation

Everything here is pure: no I/O, no shared state. The balances of a pool are
threaded through the months explicitly (see run_pool_ledger), so independent
pools can be computed in parallel while the months of one installation are
strictly sequential.

Usage:
    records = run_installation_ledger(
        "3004402254", InstallationType.CONSUMER, inputs,
        quota=Decimal("0.55"), transferred_by_period={Period(2026, 1): Decimal("14800")},
    )
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from functools import reduce
from typing import Dict, List, Mapping, Optional, Sequence

from ..config import settings
from .exceptions import LedgerValidationError, MissingPeriodError, SequencingError
from .periods import Period, period_range

logger = logging.getLogger("raas.ledger")


# ─────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────

KWH_QUANT = Decimal("0.0001")
ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


class InstallationType(str, enum.Enum):
    GENERATOR = "GENERATOR"
    CONSUMER = "CONSUMER"


class MissingPeriodPolicy(str, enum.Enum):
    FAIL = "fail"   # reject the whole sequence
    SKIP = "skip"   # no record for the month, balance carried unchanged


# ─────────────────────────────────────────────
# Input coercion
# ─────────────────────────────────────────────

def to_kwh(value, name: str = "value") -> Decimal:
    """Coerce a kWh quantity to a quantized non-negative Decimal."""
    if value is None:
        raise LedgerValidationError(f"{name} is missing")
    try:
        kwh = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"{name} is not a number: {value!r}") from None
    if not kwh.is_finite():
        raise LedgerValidationError(f"{name} is not a finite number: {value!r}")
    if kwh < 0:
        raise LedgerValidationError(f"{name} cannot be negative: {value}")
    return kwh.quantize(KWH_QUANT, ROUND_HALF_UP)


def to_quota(value) -> Decimal:
    """Coerce a quota fraction (0–1)."""
    if value is None:
        raise LedgerValidationError("quota is missing")
    try:
        quota = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"quota is not a number: {value!r}") from None
    if not quota.is_finite() or quota < 0 or quota > 1:
        raise LedgerValidationError(f"quota must be a fraction between 0 and 1, got {value}")
    return quota


def quota_fraction(quota_pct) -> Decimal:
    """Allocation quotas are stored as percentages; the ledger works in fractions."""
    try:
        pct = quota_pct if isinstance(quota_pct, Decimal) else Decimal(str(quota_pct))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"quota is not a number: {quota_pct!r}") from None
    return to_quota(pct / HUNDRED)


# ─────────────────────────────────────────────
# Data classes
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class PeriodInput:
    """Raw monthly reading for one installation."""
    period: Period
    consumption: Decimal
    generation: Decimal = ZERO

    @classmethod
    def of(cls, period, consumption, generation=0) -> PeriodInput:
        return cls(
            period=Period.parse(period),
            consumption=to_kwh(consumption, "consumption"),
            generation=to_kwh(generation, "generation"),
        )


@dataclass(frozen=True)
class ConsumerStepResult:
    available: Decimal
    compensation: Decimal
    current_balance: Decimal
    expiring_balance_amount: Decimal


@dataclass(frozen=True)
class QuotaShare:
    """One allocation: the consumer's share of a generator's surplus, in percent."""
    generator_id: str
    consumer_id: str
    quota_pct: Decimal


@dataclass(frozen=True)
class LedgerRecord:
    """Ledger line for one installation and one month."""
    installation_id: str
    installation_type: InstallationType
    period: Period
    consumption: Decimal = ZERO
    generation: Decimal = ZERO
    transferred: Decimal = ZERO
    received: Decimal = ZERO
    compensation: Decimal = ZERO
    previous_balance: Decimal = ZERO
    current_balance: Decimal = ZERO
    expiring_balance_amount: Decimal = ZERO
    expiring_balance_period: Optional[Period] = None

    def to_dict(self) -> dict:
        return {
            "installation_id": self.installation_id,
            "installation_type": self.installation_type.value,
            "period": str(self.period),
            "consumption": self.consumption,
            "generation": self.generation,
            "transferred": self.transferred,
            "received": self.received,
            "compensation": self.compensation,
            "previous_balance": self.previous_balance,
            "current_balance": self.current_balance,
            "expiring_balance_amount": self.expiring_balance_amount,
            "expiring_balance_period": (
                str(self.expiring_balance_period) if self.expiring_balance_period else None
            ),
        }


# ─────────────────────────────────────────────
# Single-period steps
# ─────────────────────────────────────────────

def generator_step(generation, consumption) -> Decimal:
    """Surplus transferred to the pool; the generator's own load is served first."""
    generation = to_kwh(generation, "generation")
    consumption = to_kwh(consumption, "consumption")
    return max(ZERO, generation - consumption)


def received_share(transferred, quota) -> Decimal:
    """A consumer's share of one generator's surplus. Quotas are never re-normalised."""
    transferred = to_kwh(transferred, "transferred")
    quota = to_quota(quota)
    return (transferred * quota).quantize(KWH_QUANT, ROUND_HALF_UP)


def consumer_step(previous_balance, consumption, received) -> ConsumerStepResult:
    previous_balance = to_kwh(previous_balance, "previous_balance")
    consumption = to_kwh(consumption, "consumption")
    received = to_kwh(received, "received")

    available = previous_balance + received
    compensation = min(consumption, available)
    current_balance = max(ZERO, available - compensation)
    return ConsumerStepResult(
        available=available,
        compensation=compensation,
        current_balance=current_balance,
        expiring_balance_amount=current_balance if current_balance > 0 else ZERO,
    )


def expiry_period(period: Period, balance: Decimal, horizon_months: Optional[int] = None) -> Optional[Period]:
    if balance <= 0:
        return None
    if horizon_months is None:
        horizon_months = settings.CREDIT_EXPIRY_MONTHS
    return period.plus_months(horizon_months)


def generator_record(installation_id: str, reading: PeriodInput) -> LedgerRecord:
    transferred = generator_step(reading.generation, reading.consumption)
    return LedgerRecord(
        installation_id=installation_id,
        installation_type=InstallationType.GENERATOR,
        period=reading.period,
        consumption=reading.consumption,
        generation=reading.generation,
        transferred=transferred,
        compensation=min(reading.consumption, reading.generation),
    )


def consumer_record(
    installation_id: str,
    reading: PeriodInput,
    previous_balance: Decimal,
    received: Decimal,
    horizon_months: Optional[int] = None,
) -> LedgerRecord:
    step = consumer_step(previous_balance, reading.consumption, received)
    return LedgerRecord(
        installation_id=installation_id,
        installation_type=InstallationType.CONSUMER,
        period=reading.period,
        consumption=reading.consumption,
        received=to_kwh(received, "received"),
        compensation=step.compensation,
        previous_balance=to_kwh(previous_balance, "previous_balance"),
        current_balance=step.current_balance,
        expiring_balance_amount=step.expiring_balance_amount,
        expiring_balance_period=expiry_period(reading.period, step.current_balance, horizon_months),
    )


# ─────────────────────────────────────────────
# Sequencing helpers
# ─────────────────────────────────────────────

def _index_inputs(installation_id: str, inputs: Sequence[PeriodInput]) -> Dict[Period, PeriodInput]:
    """Readings keyed by period; they must arrive in strictly increasing order."""
    indexed: Dict[Period, PeriodInput] = {}
    last: Optional[Period] = None
    for reading in inputs:
        if last is not None and reading.period <= last:
            raise SequencingError(
                f"Installation {installation_id}: period {reading.period} "
                f"supplied after {last}; periods must be strictly increasing"
            )
        indexed[reading.period] = reading
        last = reading.period
    return indexed


def _check_contiguous(periods: Sequence[Period]) -> List[Period]:
    periods = list(periods)
    for prev, cur in zip(periods, periods[1:]):
        if cur != prev.next():
            raise SequencingError(
                f"Period sequence must be contiguous and ascending: {prev} is followed by {cur}"
            )
    return periods


def _resolve_periods(
    installation_id: str,
    indexed: Mapping[Period, PeriodInput],
    periods: Optional[Sequence[Period]],
) -> List[Period]:
    if periods is None:
        if not indexed:
            return []
        ordered = list(indexed)
        return period_range(ordered[0], ordered[-1])
    resolved = _check_contiguous([Period.parse(p) for p in periods])
    outside = [p for p in indexed if p not in set(resolved)]
    if outside:
        raise SequencingError(
            f"Installation {installation_id}: readings for {', '.join(map(str, outside))} "
            f"fall outside the requested periods"
        )
    return resolved


def coerce_policy(policy) -> MissingPeriodPolicy:
    if policy is None:
        policy = settings.LEDGER_MISSING_PERIOD_POLICY
    try:
        return MissingPeriodPolicy(policy)
    except ValueError:
        raise LedgerValidationError(f"Unknown missing-period policy {policy!r}") from None


# ─────────────────────────────────────────────
# Period-iteration driver (one installation)
# ─────────────────────────────────────────────

def run_installation_ledger(
    installation_id: str,
    installation_type: InstallationType,
    inputs: Sequence[PeriodInput],
    *,
    quota=None,
    transferred_by_period: Optional[Mapping[Period, Decimal]] = None,
    opening_balance=ZERO,
    periods: Optional[Sequence[Period]] = None,
    policy=None,
    expiry_months: Optional[int] = None,
) -> List[LedgerRecord]:
    """
    Apply the generator or consumer step to each month in order, feeding each
    month's closing balance into the next.

    For a consumer, `transferred_by_period` holds the generator's surplus per
    month and `quota` the consumer's fraction of it (0–1). Months without a
    reading follow `policy` (see MissingPeriodPolicy).
    """
    installation_type = InstallationType(installation_type)
    policy = coerce_policy(policy)
    indexed = _index_inputs(installation_id, inputs)
    sequence = _resolve_periods(installation_id, indexed, periods)

    transferred_by_period = {
        Period.parse(p): to_kwh(v, "transferred") for p, v in (transferred_by_period or {}).items()
    }
    if installation_type == InstallationType.CONSUMER:
        if transferred_by_period and quota is None:
            raise LedgerValidationError(
                f"Consumer {installation_id}: quota is required to share generator surplus"
            )
        quota = to_quota(quota) if quota is not None else ZERO

    if policy == MissingPeriodPolicy.FAIL:
        for p in sequence:
            if p not in indexed:
                raise MissingPeriodError(installation_id, p)

    balance = to_kwh(opening_balance, "opening_balance")
    records: List[LedgerRecord] = []
    for p in sequence:
        reading = indexed.get(p)
        if reading is None:
            logger.info(
                "Installation %s: no reading for %s, carrying balance %s", installation_id, p, balance,
            )
            continue
        if installation_type == InstallationType.GENERATOR:
            records.append(generator_record(installation_id, reading))
            continue
        received = received_share(transferred_by_period.get(p, ZERO), quota)
        record = consumer_record(installation_id, reading, balance, received, expiry_months)
        records.append(record)
        balance = record.current_balance

    return records


# ─────────────────────────────────────────────
# Pool driver (generators + their consumers)
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class PoolState:
    """Fold accumulator: closing balance per consumer and the records so far."""
    balances: Mapping[str, Decimal]
    records: Mapping[str, tuple] = field(default_factory=dict)


def _validate_pool(
    installation_types: Mapping[str, InstallationType],
    shares: Sequence[QuotaShare],
) -> Dict[str, List[tuple]]:
    """Consumer id → [(generator id, quota fraction)]."""
    by_consumer: Dict[str, List[tuple]] = {}
    for share in shares:
        gen_type = installation_types.get(share.generator_id)
        con_type = installation_types.get(share.consumer_id)
        if gen_type is None or con_type is None:
            missing = share.generator_id if gen_type is None else share.consumer_id
            raise LedgerValidationError(f"Unknown installation reference {missing}")
        if gen_type != InstallationType.GENERATOR:
            raise LedgerValidationError(f"Installation {share.generator_id} is not a generator")
        if con_type != InstallationType.CONSUMER:
            raise LedgerValidationError(f"Installation {share.consumer_id} is not a consumer")
        by_consumer.setdefault(share.consumer_id, []).append(
            (share.generator_id, quota_fraction(share.quota_pct))
        )
    return by_consumer


def run_pool_ledger(
    installation_types: Mapping[str, InstallationType],
    shares: Sequence[QuotaShare],
    readings: Mapping[str, Sequence[PeriodInput]],
    periods: Sequence[Period],
    *,
    opening_balances: Optional[Mapping[str, Decimal]] = None,
    policy=None,
    expiry_months: Optional[int] = None,
) -> Dict[str, List[LedgerRecord]]:
    """
    Run every installation of a pool over a contiguous range of months.

    Within a month all generator surpluses are computed first, then each
    consumer receives the sum of its quota shares. A generator without a
    reading (skip policy) transfers nothing that month. Closing balances are
    carried in an explicit accumulator threaded through the months.
    """
    installation_types = {k: InstallationType(v) for k, v in installation_types.items()}
    policy = coerce_policy(policy)
    sequence = _check_contiguous([Period.parse(p) for p in periods])
    by_consumer = _validate_pool(installation_types, shares)

    unknown = set(readings) - set(installation_types)
    if unknown:
        raise LedgerValidationError(f"Unknown installation reference {sorted(unknown)[0]}")

    indexed = {
        inst_id: _index_inputs(inst_id, readings.get(inst_id, ()))
        for inst_id in installation_types
    }
    for inst_id, rows in indexed.items():
        _resolve_periods(inst_id, rows, sequence)
        if policy == MissingPeriodPolicy.FAIL:
            for p in sequence:
                if p not in rows:
                    raise MissingPeriodError(inst_id, p)

    generators = sorted(i for i, t in installation_types.items() if t == InstallationType.GENERATOR)
    consumers = sorted(i for i, t in installation_types.items() if t == InstallationType.CONSUMER)

    def advance(state: PoolState, period: Period) -> PoolState:
        balances = dict(state.balances)
        records = {k: list(v) for k, v in state.records.items()}

        transferred: Dict[str, Decimal] = {}
        for gen_id in generators:
            reading = indexed[gen_id].get(period)
            if reading is None:
                logger.info("Generator %s: no reading for %s, nothing transferred", gen_id, period)
                continue
            record = generator_record(gen_id, reading)
            transferred[gen_id] = record.transferred
            records.setdefault(gen_id, []).append(record)

        for con_id in consumers:
            reading = indexed[con_id].get(period)
            if reading is None:
                logger.info(
                    "Consumer %s: no reading for %s, carrying balance %s",
                    con_id, period, balances[con_id],
                )
                continue
            received = sum(
                (received_share(transferred.get(gen_id, ZERO), quota)
                 for gen_id, quota in by_consumer.get(con_id, ())),
                ZERO,
            )
            record = consumer_record(con_id, reading, balances[con_id], received, expiry_months)
            balances[con_id] = record.current_balance
            records.setdefault(con_id, []).append(record)

        return replace(state, balances=balances, records=records)

    initial = PoolState(
        balances={
            con_id: to_kwh((opening_balances or {}).get(con_id, ZERO), "opening_balance")
            for con_id in consumers
        },
    )
    final = reduce(advance, sequence, initial)

    logger.debug(
        "Pool ledger: %d generators, %d consumers, %d periods",
        len(generators), len(consumers), len(sequence),
    )
    return {inst_id: list(final.records.get(inst_id, ())) for inst_id in installation_types}

"""
RaaS — Ledger Posting
=====================
Posts a generator pool's ledger for a range of months.

Flow:
  1. Resolve the pool: the requested generators, every consumer allocated to
     them, and (transitively) every other generator feeding those consumers.
  2. Opening balance per installation = current balance of its latest posted
     record before the range. Months between that record and the range are
     handled by the missing-period policy.
  3. Load raw readings and run the pool through the ledger fold.
  4. Append one record per installation and month.

Every check happens before the first row is added, so a failing posting
leaves the ledger untouched. The caller owns the transaction.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .billing_models import (
    Allocation, EnergyLedgerRecord, Installation, get_last_ledger_record, get_readings,
)
from .exceptions import LedgerValidationError, MissingPeriodError, SequencingError
from .ledger import (
    ZERO, InstallationType, LedgerRecord, MissingPeriodPolicy, PeriodInput, QuotaShare,
    coerce_policy, run_pool_ledger,
)
from .periods import Period, period_range

logger = logging.getLogger("raas.ledger")


@dataclass
class PoolPosting:
    first: Period
    last: Period
    generator_ids: List[str]
    consumer_ids: List[str]
    records: Dict[str, List[LedgerRecord]] = field(default_factory=dict)

    @property
    def record_count(self) -> int:
        return sum(len(r) for r in self.records.values())


# ─────────────────────────────────────────────
# Pool resolution
# ─────────────────────────────────────────────

def resolve_pool(session: Session, installation_ids: Iterable[str]) -> tuple:
    """
    Close a set of installations over their allocations.

    Returns (installations by id, allocations). Starting from a consumer works
    too: its generators, and their other consumers, are pulled in.
    """
    pending = list(installation_ids)
    installations: Dict[str, Installation] = {}
    allocations: Dict[str, Allocation] = {}

    while pending:
        inst_id = pending.pop()
        if inst_id in installations:
            continue
        inst = session.get(Installation, inst_id)
        if inst is None:
            raise LedgerValidationError(f"Unknown installation reference {inst_id}")
        installations[inst_id] = inst

        column = (
            Allocation.generator_id
            if inst.installation_type == InstallationType.GENERATOR
            else Allocation.consumer_id
        )
        for alloc in session.execute(select(Allocation).where(column == inst_id)).scalars():
            allocations[alloc.id] = alloc
            pending.extend(i for i in (alloc.generator_id, alloc.consumer_id) if i not in installations)

    return installations, list(allocations.values())


# ─────────────────────────────────────────────
# Opening balances
# ─────────────────────────────────────────────

def _opening_balances(
    session: Session,
    installations: Dict[str, Installation],
    first: Period,
    last: Period,
    policy: MissingPeriodPolicy,
) -> Dict[str, Decimal]:
    balances: Dict[str, Decimal] = {}
    for inst_id, inst in installations.items():
        posted = session.execute(
            select(EnergyLedgerRecord.period)
            .where(
                EnergyLedgerRecord.installation_id == inst_id,
                EnergyLedgerRecord.period_key >= first.key,
                EnergyLedgerRecord.period_key <= last.key,
            )
            .order_by(EnergyLedgerRecord.period_key)
            .limit(1)
        ).scalars().first()
        if posted is not None:
            raise SequencingError(
                f"Installation {inst.installation_number}: period {posted} is already posted"
            )

        later = get_last_ledger_record(session, inst_id)
        if later is not None and later.period_key > last.key:
            raise SequencingError(
                f"Installation {inst.installation_number}: ledger already posted up to "
                f"{later.period}; cannot post earlier periods"
            )

        previous = get_last_ledger_record(session, inst_id, before=first)
        if previous is None:
            balances[inst_id] = ZERO
            continue

        gap_start = Period.parse(previous.period).next()
        if gap_start < first:
            if policy == MissingPeriodPolicy.FAIL:
                raise MissingPeriodError(inst_id, gap_start)
            logger.info(
                "Installation %s: periods %s–%s never posted, carrying balance %s",
                inst_id, gap_start, first.previous(), previous.current_balance,
            )
        if inst.installation_type == InstallationType.CONSUMER:
            balances[inst_id] = Decimal(str(previous.current_balance))
    return balances


# ─────────────────────────────────────────────
# Posting
# ─────────────────────────────────────────────

def post_pool(
    session: Session,
    installation_ids: Iterable[str],
    first,
    last,
    policy=None,
    expiry_months: Optional[int] = None,
) -> PoolPosting:
    """Compute and append the ledger of every installation in the pool for [first, last]."""
    first, last = Period.parse(first), Period.parse(last)
    periods = period_range(first, last)
    policy = coerce_policy(policy)

    installations, allocations = resolve_pool(session, installation_ids)
    types = {i: inst.installation_type for i, inst in installations.items()}
    shares = [QuotaShare(a.generator_id, a.consumer_id, Decimal(str(a.quota))) for a in allocations]

    opening = _opening_balances(session, installations, first, last, policy)

    readings: Dict[str, List[PeriodInput]] = defaultdict(list)
    for r in get_readings(session, installations, first, last):
        readings[r.installation_id].append(
            PeriodInput.of(Period.parse(r.period), r.consumption, r.generation)
        )

    records = run_pool_ledger(
        types, shares, readings, periods,
        opening_balances=opening, policy=policy, expiry_months=expiry_months,
    )

    for inst_records in records.values():
        session.add_all(EnergyLedgerRecord.from_record(rec) for rec in inst_records)
    session.flush()

    posting = PoolPosting(
        first=first,
        last=last,
        generator_ids=sorted(i for i, t in types.items() if t == InstallationType.GENERATOR),
        consumer_ids=sorted(i for i, t in types.items() if t == InstallationType.CONSUMER),
        records=records,
    )
    logger.info(
        "Posted %d ledger records for %d installations, %s–%s (policy=%s)",
        posting.record_count, len(installations), first, last, policy.value,
    )
    return posting


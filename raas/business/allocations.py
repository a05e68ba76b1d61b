"""
RaaS — Allocation Management
============================
Create, read, update and delete generator → consumer allocations.

Invariants checked on every write, before anything is flushed:
  - the generator is a GENERATOR installation, the consumer a CONSUMER one
  - at most one allocation per (generator, consumer) pair
  - quota is a percentage, 0 < quota ≤ 100
  - the quotas of all allocations of one generator sum to ≤ 100 %

Only administrators write. Regular users see allocations that touch one of
their own installations.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import AuthUser
from .billing_models import (
    Allocation, Installation, get_allocations_touching, get_generator_quota_total,
    get_installation, get_user_installation_ids,
)
from .exceptions import (
    AllocationConflict, AllocationNotFound, InvalidInstallation, InvalidQuota,
    PermissionDenied, QuotaExceeded,
)
from .ledger import InstallationType

logger = logging.getLogger("raas.allocations")

MAX_TOTAL_QUOTA = Decimal("100")


def _require_admin(user: AuthUser) -> None:
    if not user.is_admin:
        raise PermissionDenied("Only administrators can manage allocations")


def _parse_quota(value) -> Decimal:
    try:
        quota = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidQuota(f"Quota is not a number: {value!r}") from None
    if not quota.is_finite() or quota <= 0 or quota > MAX_TOTAL_QUOTA:
        raise InvalidQuota(f"Quota must be greater than 0 and at most 100, got {value}")
    return quota


def _load_typed(session: Session, installation_id: str, expected: InstallationType) -> Installation:
    inst = get_installation(session, installation_id)
    if inst is None:
        raise InvalidInstallation(f"Installation {installation_id} not found")
    if inst.installation_type != expected:
        raise InvalidInstallation(
            f"Installation {inst.installation_number} is a {inst.installation_type.value}, "
            f"expected {expected.value}"
        )
    return inst


def _check_pair_free(
    session: Session, generator_id: str, consumer_id: str, exclude_id: Optional[str] = None,
) -> None:
    q = select(Allocation).where(
        Allocation.generator_id == generator_id, Allocation.consumer_id == consumer_id,
    )
    if exclude_id:
        q = q.where(Allocation.id != exclude_id)
    if session.execute(q).scalars().first() is not None:
        raise AllocationConflict("An allocation between these installations already exists")


def _check_quota_total(
    session: Session, generator_id: str, quota: Decimal, exclude_id: Optional[str] = None,
) -> None:
    allocated = get_generator_quota_total(session, generator_id, exclude_allocation_id=exclude_id)
    if allocated + quota > MAX_TOTAL_QUOTA:
        raise QuotaExceeded(
            f"Quota sum would be {allocated + quota}% for generator {generator_id}; "
            f"{MAX_TOTAL_QUOTA - allocated}% is still available"
        )


# ─────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────

def list_allocations(session: Session, user: AuthUser) -> List[Allocation]:
    if user.is_admin:
        q = select(Allocation).order_by(Allocation.created_at, Allocation.id)
        return list(session.execute(q).scalars().all())
    return get_allocations_touching(session, get_user_installation_ids(session, user.user_id))


def get_allocation(session: Session, allocation_id: str, user: AuthUser) -> Allocation:
    allocation = session.get(Allocation, allocation_id)
    if allocation is None:
        raise AllocationNotFound(f"Allocation {allocation_id} not found")
    if not user.is_admin:
        own = set(get_user_installation_ids(session, user.user_id))
        if allocation.generator_id not in own and allocation.consumer_id not in own:
            raise PermissionDenied("Access denied to this allocation")
    return allocation


def create_allocation(
    session: Session, user: AuthUser, generator_id: str, consumer_id: str, quota,
) -> Allocation:
    _require_admin(user)
    quota = _parse_quota(quota)
    _load_typed(session, generator_id, InstallationType.GENERATOR)
    _load_typed(session, consumer_id, InstallationType.CONSUMER)
    _check_pair_free(session, generator_id, consumer_id)
    _check_quota_total(session, generator_id, quota)

    allocation = Allocation(generator_id=generator_id, consumer_id=consumer_id, quota=quota)
    session.add(allocation)
    session.flush()
    logger.info(
        "Allocation %s created: %s → %s at %s%% by %s",
        allocation.id, generator_id, consumer_id, quota, user.user_id,
    )
    return allocation


def update_allocation(
    session: Session,
    allocation_id: str,
    user: AuthUser,
    generator_id: Optional[str] = None,
    consumer_id: Optional[str] = None,
    quota=None,
) -> Allocation:
    """Partial update; the resulting allocation is re-validated as a whole."""
    _require_admin(user)
    allocation = session.get(Allocation, allocation_id)
    if allocation is None:
        raise AllocationNotFound(f"Allocation {allocation_id} not found")

    new_generator = generator_id or allocation.generator_id
    new_consumer = consumer_id or allocation.consumer_id
    new_quota = _parse_quota(quota) if quota is not None else Decimal(str(allocation.quota))

    if generator_id:
        _load_typed(session, new_generator, InstallationType.GENERATOR)
    if consumer_id:
        _load_typed(session, new_consumer, InstallationType.CONSUMER)
    if generator_id or consumer_id:
        _check_pair_free(session, new_generator, new_consumer, exclude_id=allocation.id)
    _check_quota_total(session, new_generator, new_quota, exclude_id=allocation.id)

    allocation.generator_id = new_generator
    allocation.consumer_id = new_consumer
    allocation.quota = new_quota
    session.flush()
    logger.info("Allocation %s updated by %s", allocation.id, user.user_id)
    return allocation


def delete_allocation(session: Session, allocation_id: str, user: AuthUser) -> None:
    _require_admin(user)
    allocation = session.get(Allocation, allocation_id)
    if allocation is None:
        raise AllocationNotFound(f"Allocation {allocation_id} not found")
    session.delete(allocation)
    session.flush()
    logger.info("Allocation %s deleted by %s", allocation_id, user.user_id)

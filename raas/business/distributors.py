"""
RaaS — Distributor Management
=============================
Electricity distributors and their kWh rate, the base price of every invoice.

Only administrators write. A distributor cannot be removed while installations
or upload batches still point at it.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .auth import AuthUser
from .billing_models import Distributor, Installation, UploadBatch
from .exceptions import DistributorConflict, DistributorError, DistributorNotFound, PermissionDenied

logger = logging.getLogger("raas.distributors")


def _require_admin(user: AuthUser) -> None:
    if not user.is_admin:
        raise PermissionDenied("Only administrators can manage distributors")


def _parse_rate(value) -> Decimal:
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise DistributorError(f"kWh rate is not a number: {value!r}") from None
    if not rate.is_finite() or rate <= 0:
        raise DistributorError(f"kWh rate must be positive, got {value}")
    return rate


def _parse_discount(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        discount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise DistributorError(f"Discount is not a number: {value!r}") from None
    if not discount.is_finite() or discount < 0 or discount > 1:
        raise DistributorError(f"Discount must be a fraction between 0 and 1, got {value}")
    return discount


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise DistributorError("Distributor name is required")
    return name


def _check_name_free(session: Session, name: str, exclude_id: Optional[str] = None) -> None:
    q = select(Distributor.id).where(Distributor.name == name)
    if exclude_id:
        q = q.where(Distributor.id != exclude_id)
    if session.execute(q).first() is not None:
        raise DistributorConflict(f"Distributor {name!r} already exists")


def _count(session: Session, column, distributor_id: str) -> int:
    q = select(func.count()).select_from(column.class_).where(column == distributor_id)
    return int(session.execute(q).scalar_one())


# ─────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────

def list_distributors(session: Session) -> List[Distributor]:
    return list(session.execute(select(Distributor).order_by(Distributor.name)).scalars().all())


def get_distributor(session: Session, distributor_id: str) -> Distributor:
    distributor = session.get(Distributor, distributor_id)
    if distributor is None:
        raise DistributorNotFound(f"Distributor {distributor_id} not found")
    return distributor


def create_distributor(
    session: Session, user: AuthUser, name: str, kwh_rate, default_discount=None,
) -> Distributor:
    _require_admin(user)
    name = _clean_name(name)
    rate = _parse_rate(kwh_rate)
    discount = _parse_discount(default_discount)
    _check_name_free(session, name)

    distributor = Distributor(name=name, kwh_rate=rate, default_discount=discount)
    session.add(distributor)
    session.flush()
    logger.info("Distributor %s (%s) created at %s/kWh by %s", distributor.id, name, rate, user.user_id)
    return distributor


def update_distributor(
    session: Session,
    distributor_id: str,
    user: AuthUser,
    name: Optional[str] = None,
    kwh_rate=None,
    default_discount=None,
) -> Distributor:
    """Partial update. Existing invoices keep the rate they were issued with."""
    _require_admin(user)
    distributor = get_distributor(session, distributor_id)

    new_name = _clean_name(name) if name is not None else distributor.name
    new_rate = _parse_rate(kwh_rate) if kwh_rate is not None else distributor.kwh_rate
    new_discount = (
        _parse_discount(default_discount) if default_discount is not None
        else distributor.default_discount
    )
    if new_name != distributor.name:
        _check_name_free(session, new_name, exclude_id=distributor.id)

    distributor.name = new_name
    distributor.kwh_rate = new_rate
    distributor.default_discount = new_discount
    session.flush()
    logger.info("Distributor %s updated by %s", distributor.id, user.user_id)
    return distributor


def delete_distributor(session: Session, distributor_id: str, user: AuthUser) -> None:
    _require_admin(user)
    distributor = get_distributor(session, distributor_id)

    installations = _count(session, Installation.distributor_id, distributor_id)
    if installations:
        raise DistributorConflict(
            f"Distributor {distributor.name} still has {installations} installations"
        )
    if _count(session, UploadBatch.distributor_id, distributor_id):
        raise DistributorConflict(f"Distributor {distributor.name} is referenced by upload history")

    session.delete(distributor)
    session.flush()
    logger.info("Distributor %s deleted by %s", distributor_id, user.user_id)

"""
RaaS — Installation Management
==============================
Metered installations: solar roofs (GENERATOR) and the accounts that receive
their surplus (CONSUMER).

Rules:
  - installation numbers are unique across distributors
  - the type of an installation is fixed once it has allocations or ledger lines
  - an installation referenced by allocations, readings, ledger lines or
    invoices cannot be deleted

Only administrators write. Users see the installations they own.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .auth import AuthUser
from .billing_models import (
    Allocation, Distributor, EnergyLedgerRecord, EnergyReading, Installation, Invoice,
    get_installation_by_number,
)
from .exceptions import (
    DistributorNotFound, InstallationConflict, InstallationError, InstallationNotFound,
    PermissionDenied,
)
from .ledger import InstallationType

logger = logging.getLogger("raas.installations")


def _require_admin(user: AuthUser) -> None:
    if not user.is_admin:
        raise PermissionDenied("Only administrators can manage installations")


def _parse_type(value) -> InstallationType:
    try:
        return InstallationType(value)
    except ValueError:
        raise InstallationError(f"Unknown installation type {value!r}") from None


def _clean_number(number: Optional[str]) -> str:
    number = (number or "").strip()
    if not number:
        raise InstallationError("Installation number is required")
    return number


def _check_number_free(session: Session, number: str) -> None:
    if get_installation_by_number(session, number) is not None:
        raise InstallationConflict(f"Installation number {number} already exists")


def _check_distributor(session: Session, distributor_id: Optional[str]) -> None:
    if distributor_id and session.get(Distributor, distributor_id) is None:
        raise DistributorNotFound(f"Distributor {distributor_id} not found")


def _references(session: Session, installation_id: str) -> Dict[str, int]:
    counts = {
        "allocations": select(func.count(Allocation.id)).where(or_(
            Allocation.generator_id == installation_id, Allocation.consumer_id == installation_id,
        )),
        "readings": select(func.count(EnergyReading.id)).where(
            EnergyReading.installation_id == installation_id
        ),
        "ledger records": select(func.count(EnergyLedgerRecord.id)).where(
            EnergyLedgerRecord.installation_id == installation_id
        ),
        "invoices": select(func.count(Invoice.id)).where(Invoice.installation_id == installation_id),
    }
    return {name: int(session.execute(q).scalar_one()) for name, q in counts.items()}


# ─────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────

def list_installations(session: Session, user: AuthUser) -> List[Installation]:
    q = select(Installation).order_by(Installation.installation_number)
    if not user.is_admin:
        q = q.where(Installation.user_id == user.user_id)
    return list(session.execute(q).scalars().all())


def get_installation(session: Session, installation_id: str, user: AuthUser) -> Installation:
    inst = session.get(Installation, installation_id)
    if inst is None:
        raise InstallationNotFound(f"Installation {installation_id} not found")
    if not user.is_admin and inst.user_id != user.user_id:
        raise PermissionDenied("Access denied to this installation")
    return inst


def create_installation(
    session: Session,
    user: AuthUser,
    installation_number: str,
    installation_type,
    distributor_id: Optional[str] = None,
    user_id: Optional[str] = None,
    name: Optional[str] = None,
) -> Installation:
    _require_admin(user)
    number = _clean_number(installation_number)
    inst_type = _parse_type(installation_type)
    _check_distributor(session, distributor_id)
    _check_number_free(session, number)

    inst = Installation(
        installation_number=number,
        installation_type=inst_type,
        distributor_id=distributor_id,
        user_id=user_id,
        name=name,
    )
    session.add(inst)
    session.flush()
    logger.info(
        "Installation %s (%s, %s) created by %s", inst.id, number, inst_type.value, user.user_id,
    )
    return inst


def update_installation(
    session: Session,
    installation_id: str,
    user: AuthUser,
    installation_number: Optional[str] = None,
    installation_type=None,
    distributor_id: Optional[str] = None,
    user_id: Optional[str] = None,
    name: Optional[str] = None,
) -> Installation:
    """Partial update; fields left as None keep their value."""
    _require_admin(user)
    inst = get_installation(session, installation_id, user)

    if installation_number is not None:
        number = _clean_number(installation_number)
        if number != inst.installation_number:
            _check_number_free(session, number)
        inst_number = number
    else:
        inst_number = inst.installation_number

    inst_type = inst.installation_type
    if installation_type is not None:
        inst_type = _parse_type(installation_type)
        if inst_type != inst.installation_type:
            refs = _references(session, inst.id)
            if refs["allocations"] or refs["ledger records"]:
                raise InstallationConflict(
                    f"Installation {inst.installation_number} has allocations or ledger records; "
                    f"its type cannot change"
                )

    if distributor_id is not None:
        _check_distributor(session, distributor_id)
        inst.distributor_id = distributor_id
    if user_id is not None:
        inst.user_id = user_id
    if name is not None:
        inst.name = name
    inst.installation_number = inst_number
    inst.installation_type = inst_type
    session.flush()
    logger.info("Installation %s updated by %s", inst.id, user.user_id)
    return inst


def delete_installation(session: Session, installation_id: str, user: AuthUser) -> None:
    _require_admin(user)
    inst = get_installation(session, installation_id, user)

    in_use = {name: n for name, n in _references(session, inst.id).items() if n}
    if in_use:
        detail = ", ".join(f"{n} {name}" for name, n in in_use.items())
        raise InstallationConflict(
            f"Installation {inst.installation_number} is still referenced ({detail})"
        )

    session.delete(inst)
    session.flush()
    logger.info("Installation %s (%s) deleted by %s", installation_id, inst.installation_number, user.user_id)

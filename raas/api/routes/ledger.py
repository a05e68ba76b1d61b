"""
Energy credit ledger endpoints.

POST /ledger/compute             — run the ledger over supplied readings, nothing stored
POST /ledger/post                — post a generator pool from stored readings
GET  /ledger/{installation_id}   — posted records, ascending by period
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...business.auth import AuthUser
from ...business.billing_models import get_installation, get_ledger_records
from ...business.exceptions import LedgerValidationError
from ...business.ledger import LedgerRecord, PeriodInput, QuotaShare, run_pool_ledger
from ...business.ledger_service import post_pool
from ...business.periods import Period, period_range
from ..deps import get_current_user, get_db, require_admin
from ..schemas import (
    LedgerComputeRequest, LedgerComputeResponse, LedgerPostRequest, LedgerPostResponse,
    LedgerRecordResponse,
)

router = APIRouter()


def _to_response(records: Dict[str, List[LedgerRecord]]) -> Dict[str, List[LedgerRecordResponse]]:
    return {
        inst_id: [LedgerRecordResponse(**r.to_dict()) for r in rows]
        for inst_id, rows in records.items()
    }


@router.post("/ledger/compute", response_model=LedgerComputeResponse)
def compute_ledger(
    body: LedgerComputeRequest,
    user: AuthUser = Depends(get_current_user),
):
    """
    Stateless computation. Period range defaults to the earliest and latest
    reading supplied; months without a reading follow the missing-period policy.
    """
    seen = set()
    for inst in body.installations:
        if inst.installation_id in seen:
            raise LedgerValidationError(f"Installation {inst.installation_id} is listed more than once")
        seen.add(inst.installation_id)

    readings = {
        inst.installation_id: [PeriodInput.of(r.period, r.consumption, r.generation) for r in inst.readings]
        for inst in body.installations
    }
    all_periods = [r.period for rows in readings.values() for r in rows]
    if body.first_period:
        first = Period.parse(body.first_period)
    elif all_periods:
        first = min(all_periods)
    else:
        return LedgerComputeResponse(records={i.installation_id: [] for i in body.installations})
    last = Period.parse(body.last_period) if body.last_period else max(all_periods or [first])

    records = run_pool_ledger(
        {i.installation_id: i.installation_type for i in body.installations},
        [QuotaShare(a.generator_id, a.consumer_id, a.quota) for a in body.allocations],
        readings,
        period_range(first, last),
        opening_balances={i.installation_id: i.opening_balance for i in body.installations},
        policy=body.missing_period_policy,
    )
    return LedgerComputeResponse(
        first_period=str(first), last_period=str(last), records=_to_response(records),
    )


@router.post("/ledger/post", response_model=LedgerPostResponse, status_code=201)
def post_ledger(
    body: LedgerPostRequest,
    user: AuthUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    posting = post_pool(
        db, body.installation_ids, body.first_period, body.last_period,
        policy=body.missing_period_policy,
    )
    db.commit()
    return LedgerPostResponse(
        first_period=str(posting.first),
        last_period=str(posting.last),
        generator_ids=posting.generator_ids,
        consumer_ids=posting.consumer_ids,
        record_count=posting.record_count,
        records=_to_response(posting.records),
    )


@router.get("/ledger/{installation_id}", response_model=List[LedgerRecordResponse])
def installation_ledger(
    installation_id: str,
    first_period: Optional[str] = Query(None, description="MM/YYYY"),
    last_period: Optional[str] = Query(None, description="MM/YYYY"),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    inst = get_installation(db, installation_id)
    if inst is None:
        raise HTTPException(404, f"Installation {installation_id} not found")
    if not user.is_admin and inst.user_id != user.user_id:
        raise HTTPException(403, "Access denied to this installation")
    return get_ledger_records(
        db,
        installation_id,
        Period.parse(first_period) if first_period else None,
        Period.parse(last_period) if last_period else None,
    )

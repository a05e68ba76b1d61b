"""POST /stats/calculate, GET /stats"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...business.auth import AuthUser
from ...business.billing_models import StatsPeriodType
from ...business.stats import calculate_stats, get_stats, refresh_all
from ..deps import get_current_user, get_db, require_admin
from ..schemas import AggregateStatsResponse, StatsCalculateRequest

router = APIRouter()


@router.post("/stats/calculate", response_model=List[AggregateStatsResponse])
def calculate(
    body: StatsCalculateRequest,
    user: AuthUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """One label when period_label is given; otherwise the full refresh window."""
    if body.period_label:
        if body.period_type is None:
            raise HTTPException(400, "period_type is required with period_label")
        row = calculate_stats(db, body.period_label, body.period_type, body.kwh_price)
        rows = [row] if row is not None else []
    else:
        rows = refresh_all(db, kwh_price=body.kwh_price)
    db.commit()
    return rows


@router.get("/stats", response_model=List[AggregateStatsResponse])
def list_stats(
    period_type: Optional[StatsPeriodType] = Query(None),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_stats(db, period_type)

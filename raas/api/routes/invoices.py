"""
Invoice endpoints.

POST /invoices/calculate        — price a kWh amount, nothing stored
POST /invoices/generate         — invoice a period's compensated kWh
GET  /invoices, GET /invoices/{id}
GET  /invoices/stats            — count, amount and savings by status and month
POST /invoices/refresh-overdue  — flag pending invoices past their due date
POST /invoices/{id}/pay, POST /invoices/{id}/cancel
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...business.auth import AuthUser
from ...business.billing_models import InvoiceStatus
from ...business.invoice_calculator import (
    InvoiceGenerator, calculate_environmental_impact, calculate_invoice_amount,
)
from ..deps import get_current_user, get_db, require_admin
from ..schemas import (
    InvoiceCalculateRequest, InvoiceCalculationResponse, InvoiceCancelRequest,
    InvoiceGenerateRequest, InvoiceResponse, InvoiceStatsResponse, RefreshOverdueResponse,
)

router = APIRouter()


@router.post("/invoices/calculate", response_model=InvoiceCalculationResponse)
def calculate_invoice(body: InvoiceCalculateRequest, user: AuthUser = Depends(get_current_user)):
    amount = calculate_invoice_amount(body.kwh, body.rate, body.discount)
    impact = calculate_environmental_impact(body.kwh)
    return InvoiceCalculationResponse(
        kwh=amount.kwh,
        rate=amount.rate,
        discount=amount.discount,
        original_value=amount.original_value,
        invoice_amount=amount.invoice_amount,
        savings=amount.savings,
        savings_percentage=amount.savings_percentage,
        effective_rate=amount.effective_rate,
        co2_kg=impact.co2_kg,
        trees=impact.trees,
    )


@router.post("/invoices/generate", response_model=InvoiceResponse, status_code=201)
def generate_invoice(
    body: InvoiceGenerateRequest,
    user: AuthUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    invoice = InvoiceGenerator(db).generate(
        user_id=body.user_id,
        installation_ids=body.installation_ids,
        period=body.period,
        rate=body.rate,
        discount=body.discount,
        number=body.invoice_number,
        due_date=body.due_date,
    )
    db.commit()
    return invoice


@router.get("/invoices", response_model=List[InvoiceResponse])
def list_invoices(
    status: Optional[InvoiceStatus] = Query(None),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return InvoiceGenerator(db).list_invoices(user, status)


@router.get("/invoices/stats", response_model=InvoiceStatsResponse)
def invoice_stats(
    period: Optional[str] = Query(None, description="MM/YYYY"),
    user_id: Optional[str] = Query(None, description="Admins only: narrow to one customer"),
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return InvoiceGenerator(db).stats(user, period=period, user_id=user_id)


@router.post("/invoices/refresh-overdue", response_model=RefreshOverdueResponse)
def refresh_overdue(user: AuthUser = Depends(require_admin), db: Session = Depends(get_db)):
    changed = InvoiceGenerator(db).refresh_overdue()
    db.commit()
    return RefreshOverdueResponse(changed=changed)


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(
    invoice_id: str,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return InvoiceGenerator(db).get_invoice(invoice_id, user)


@router.post("/invoices/{invoice_id}/pay", response_model=InvoiceResponse)
def pay_invoice(
    invoice_id: str,
    user: AuthUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    invoice = InvoiceGenerator(db).mark_paid(invoice_id)
    db.commit()
    return invoice


@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceResponse)
def cancel_invoice(
    invoice_id: str,
    body: InvoiceCancelRequest,
    user: AuthUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    invoice = InvoiceGenerator(db).cancel(invoice_id, body.reason)
    db.commit()
    return invoice

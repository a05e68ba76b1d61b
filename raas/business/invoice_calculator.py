"""
RaaS — Invoice Calculator
=========================
Prices the kWh compensated at a customer's installations and manages the
resulting invoices.

Pricing:
  original  = kWh × distributor rate
  amount    = original × (1 − discount)
  savings   = original − amount

Environmental impact:
  CO₂ avoided (kg) = kWh × KWH_TO_CO2_KG
  trees            = CO₂ / CO2_KG_PER_TREE

Usage:
    generator = InvoiceGenerator(session)
    invoice = generator.generate(user_id="u-1", installation_ids=[...], period="01/2026")
    generator.mark_paid(invoice.id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from .auth import AuthUser
from .billing_models import (
    Installation, Invoice, InvoiceStatus, count_invoices_for_period,
    get_ledger_records_for_periods,
)
from .exceptions import (
    DuplicateInvoiceNumber, InvalidInvoiceTransition, InvoiceError, InvoiceNotFound, NoEnergyData,
    PermissionDenied,
)
from .ledger import InstallationType
from .periods import Period

logger = logging.getLogger("raas.invoices")

CENTS = Decimal("0.01")
RATE_QUANT = Decimal("0.000001")


def _decimal(value, name: str) -> Decimal:
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvoiceError(f"{name} is not a number: {value!r}") from None
    if not d.is_finite() or d < 0:
        raise InvoiceError(f"{name} must be a non-negative number, got {value}")
    return d


# ─────────────────────────────────────────────
# Pure calculations
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class InvoiceAmount:
    kwh: Decimal
    rate: Decimal
    discount: Decimal
    original_value: Decimal
    invoice_amount: Decimal
    savings: Decimal
    savings_percentage: Decimal
    effective_rate: Decimal


@dataclass(frozen=True)
class EnvironmentalImpact:
    co2_kg: Decimal
    trees: Decimal


@dataclass
class InvoiceTotals:
    count: int = 0
    amount: Decimal = Decimal("0")
    savings: Decimal = Decimal("0")

    def add(self, invoice: Invoice) -> None:
        self.count += 1
        self.amount += Decimal(str(invoice.amount))
        self.savings += Decimal(str(invoice.savings))


@dataclass
class InvoiceStats:
    """Invoice totals overall, per status and per reference month (ascending)."""
    totals: InvoiceTotals = field(default_factory=InvoiceTotals)
    by_status: Dict[str, InvoiceTotals] = field(default_factory=dict)
    monthly: Dict[str, InvoiceTotals] = field(default_factory=dict)


def calculate_invoice_amount(kwh, rate, discount=None) -> InvoiceAmount:
    """Price compensated kWh at the distributor rate minus the RaaS discount (fraction 0–1)."""
    kwh = _decimal(kwh, "kwh")
    rate = _decimal(rate, "rate")
    discount = _decimal(settings.DEFAULT_DISCOUNT if discount is None else discount, "discount")
    if discount > 1:
        raise InvoiceError(f"discount must be a fraction between 0 and 1, got {discount}")

    original = kwh * rate
    amount = original * (1 - discount)
    return InvoiceAmount(
        kwh=kwh,
        rate=rate,
        discount=discount,
        original_value=original.quantize(CENTS, ROUND_HALF_UP),
        invoice_amount=amount.quantize(CENTS, ROUND_HALF_UP),
        savings=(original - amount).quantize(CENTS, ROUND_HALF_UP),
        savings_percentage=(discount * 100).quantize(CENTS, ROUND_HALF_UP),
        effective_rate=(rate * (1 - discount)).quantize(RATE_QUANT, ROUND_HALF_UP),
    )


def calculate_environmental_impact(kwh) -> EnvironmentalImpact:
    kwh = _decimal(kwh, "kwh")
    co2 = kwh * Decimal(str(settings.KWH_TO_CO2_KG))
    trees = co2 / Decimal(str(settings.CO2_KG_PER_TREE))
    return EnvironmentalImpact(
        co2_kg=co2.quantize(CENTS, ROUND_HALF_UP),
        trees=trees.quantize(CENTS, ROUND_HALF_UP),
    )


def determine_invoice_status(paid: bool, due_date: date, today: Optional[date] = None) -> InvoiceStatus:
    if paid:
        return InvoiceStatus.PAID
    if (today or date.today()) > due_date:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PENDING


def default_due_date(period: Period) -> date:
    return period.end_date + timedelta(days=settings.INVOICE_DUE_DAYS)


def invoice_number(period: Period, sequence: int) -> str:
    return f"RAAS-{period.key}-{sequence:04d}"


# ─────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────

class InvoiceGenerator:
    """
    Builds invoices from posted ledger records and applies status changes.
    Flushes but never commits; the caller owns the transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def billable_kwh(self, installation_ids: Sequence[str], period: Period) -> Decimal:
        """Σ compensation of the consumer records posted for the period."""
        records = get_ledger_records_for_periods(self.session, [period], installation_ids)
        consumer_records = [
            r for r in records if r.installation_type == InstallationType.CONSUMER
        ]
        if not consumer_records:
            raise NoEnergyData(
                f"No ledger records for installations {', '.join(installation_ids)} in {period}"
            )
        return sum((Decimal(str(r.compensation)) for r in consumer_records), Decimal("0"))

    def _number_taken(self, number: str) -> bool:
        q = select(Invoice.id).where(Invoice.invoice_number == number)
        return self.session.execute(q).first() is not None

    def _next_number(self, period: Period) -> str:
        """First unused sequence number of the period; manually numbered invoices may hold some."""
        sequence = count_invoices_for_period(self.session, period) + 1
        number = invoice_number(period, sequence)
        while self._number_taken(number):
            sequence += 1
            number = invoice_number(period, sequence)
        return number

    def _resolve_rate(self, installation_ids: Sequence[str], rate, discount) -> tuple:
        if rate is not None and discount is not None:
            return rate, discount
        q = select(Installation).where(Installation.id.in_(list(installation_ids)))
        distributor = next(
            (i.distributor for i in self.session.execute(q).scalars() if i.distributor is not None),
            None,
        )
        if rate is None:
            if distributor is None:
                raise InvoiceError("No kWh rate given and no distributor rate on file")
            rate = distributor.kwh_rate
        if discount is None and distributor is not None and distributor.default_discount is not None:
            discount = distributor.default_discount
        return rate, discount

    def generate(
        self,
        user_id: str,
        installation_ids: Sequence[str],
        period,
        rate=None,
        discount=None,
        number: Optional[str] = None,
        due_date: Optional[date] = None,
    ) -> Invoice:
        period = Period.parse(period)
        if not installation_ids:
            raise InvoiceError("At least one installation is required")

        kwh = self.billable_kwh(installation_ids, period)
        rate, discount = self._resolve_rate(installation_ids, rate, discount)
        amount = calculate_invoice_amount(kwh, rate, discount)
        impact = calculate_environmental_impact(kwh)

        if number is None:
            number = self._next_number(period)
        elif self._number_taken(number):
            raise DuplicateInvoiceNumber(f"Invoice number {number} is already in use")

        invoice = Invoice(
            invoice_number=number,
            user_id=user_id,
            installation_id=installation_ids[0],
            period=str(period),
            period_key=period.key,
            kwh_billed=kwh,
            kwh_rate=amount.rate,
            discount=amount.discount,
            amount=amount.invoice_amount,
            total_amount=amount.original_value,
            savings=amount.savings,
            co2_avoided_kg=impact.co2_kg,
            status=InvoiceStatus.PENDING,
            due_date=due_date or default_due_date(period),
        )
        self.session.add(invoice)
        self.session.flush()
        logger.info(
            "Invoice %s generated for user %s, %s: %s kWh → %s",
            invoice.invoice_number, user_id, period, kwh, amount.invoice_amount,
        )
        return invoice

    def get_invoice(self, invoice_id: str, user: Optional[AuthUser] = None) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFound(f"Invoice {invoice_id} not found")
        if user is not None and not user.is_admin and invoice.user_id != user.user_id:
            raise PermissionDenied("Access denied to this invoice")
        return invoice

    def list_invoices(self, user: AuthUser, status: Optional[InvoiceStatus] = None) -> List[Invoice]:
        q = select(Invoice).order_by(Invoice.period_key.desc(), Invoice.invoice_number)
        if not user.is_admin:
            q = q.where(Invoice.user_id == user.user_id)
        if status is not None:
            q = q.where(Invoice.status == status)
        return list(self.session.execute(q).scalars().all())

    def stats(
        self, user: AuthUser, period=None, user_id: Optional[str] = None,
    ) -> InvoiceStats:
        """
        Totals over the invoices the caller may see. Admins see everything,
        optionally narrowed to one customer; users only their own.
        """
        q = select(Invoice).order_by(Invoice.period_key, Invoice.invoice_number)
        if not user.is_admin:
            q = q.where(Invoice.user_id == user.user_id)
        elif user_id:
            q = q.where(Invoice.user_id == user_id)
        if period is not None:
            q = q.where(Invoice.period_key == Period.parse(period).key)

        result = InvoiceStats(by_status={s.value: InvoiceTotals() for s in InvoiceStatus})
        for invoice in self.session.execute(q).scalars():
            result.totals.add(invoice)
            result.by_status[invoice.status.value].add(invoice)
            result.monthly.setdefault(invoice.period, InvoiceTotals()).add(invoice)
        return result

    def refresh_overdue(self, today: Optional[date] = None) -> int:
        """Flag pending invoices past their due date. Returns the number changed."""
        q = select(Invoice).where(Invoice.status == InvoiceStatus.PENDING)
        changed = 0
        for invoice in self.session.execute(q).scalars():
            if determine_invoice_status(False, invoice.due_date, today) == InvoiceStatus.OVERDUE:
                invoice.status = InvoiceStatus.OVERDUE
                changed += 1
        self.session.flush()
        if changed:
            logger.info("%d invoices marked overdue", changed)
        return changed

    def _check_open(self, invoice: Invoice) -> None:
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELED):
            raise InvalidInvoiceTransition(
                f"Invoice {invoice.invoice_number} is already {invoice.status.value}"
            )

    def mark_paid(self, invoice_id: str, paid_at: Optional[datetime] = None) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        self._check_open(invoice)
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = paid_at or datetime.now(timezone.utc)
        self.session.flush()
        logger.info("Invoice %s paid", invoice.invoice_number)
        return invoice

    def cancel(self, invoice_id: str, reason: str) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        self._check_open(invoice)
        invoice.status = InvoiceStatus.CANCELED
        invoice.cancellation_reason = reason
        self.session.flush()
        logger.info("Invoice %s canceled: %s", invoice.invoice_number, reason)
        return invoice

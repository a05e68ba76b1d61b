"""
RaaS API — Request / Response Schemas

kWh and money values are Decimals and serialize as strings, so no
precision is lost between the ledger and API clients.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..business.billing_models import InvoiceStatus, StatsPeriodType, UploadStatus
from ..business.ledger import InstallationType, MissingPeriodPolicy


# ── Ledger ───────────────────────────────────────────────────────────────

class ReadingIn(BaseModel):
    period: str = Field(..., examples=["01/2026"])
    consumption: Decimal
    generation: Decimal = Decimal("0")


class InstallationIn(BaseModel):
    installation_id: str
    installation_type: InstallationType
    opening_balance: Decimal = Decimal("0")
    readings: List[ReadingIn] = []


class ShareIn(BaseModel):
    generator_id: str
    consumer_id: str
    quota: Decimal = Field(..., description="Percentage of the generator's surplus, 0–100")


class LedgerComputeRequest(BaseModel):
    installations: List[InstallationIn]
    allocations: List[ShareIn] = []
    first_period: Optional[str] = None
    last_period: Optional[str] = None
    missing_period_policy: Optional[MissingPeriodPolicy] = None


class LedgerRecordResponse(BaseModel):
    installation_id: str
    installation_type: InstallationType
    period: str
    consumption: Decimal
    generation: Decimal
    transferred: Decimal
    received: Decimal
    compensation: Decimal
    previous_balance: Decimal
    current_balance: Decimal
    expiring_balance_amount: Decimal
    expiring_balance_period: Optional[str] = None

    model_config = {"from_attributes": True}


class LedgerComputeResponse(BaseModel):
    first_period: Optional[str] = None
    last_period: Optional[str] = None
    records: Dict[str, List[LedgerRecordResponse]]


class LedgerPostRequest(BaseModel):
    installation_ids: List[str] = Field(..., min_length=1)
    first_period: str
    last_period: str
    missing_period_policy: Optional[MissingPeriodPolicy] = None


class LedgerPostResponse(BaseModel):
    first_period: str
    last_period: str
    generator_ids: List[str]
    consumer_ids: List[str]
    record_count: int
    records: Dict[str, List[LedgerRecordResponse]]


# ── Allocations ──────────────────────────────────────────────────────────

class AllocationCreate(BaseModel):
    generator_id: str
    consumer_id: str
    quota: Decimal


class AllocationUpdate(BaseModel):
    generator_id: Optional[str] = None
    consumer_id: Optional[str] = None
    quota: Optional[Decimal] = None


class AllocationResponse(BaseModel):
    id: str
    generator_id: str
    consumer_id: str
    quota: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Distributors ─────────────────────────────────────────────────────────

class DistributorCreate(BaseModel):
    name: str = Field(..., min_length=1)
    kwh_rate: Decimal = Field(..., description="Base price per kWh, must be positive")
    default_discount: Optional[Decimal] = Field(None, description="Fraction 0–1")


class DistributorUpdate(BaseModel):
    name: Optional[str] = None
    kwh_rate: Optional[Decimal] = None
    default_discount: Optional[Decimal] = None


class DistributorResponse(BaseModel):
    id: str
    name: str
    kwh_rate: Decimal
    default_discount: Optional[Decimal] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Installations ────────────────────────────────────────────────────────

class InstallationCreate(BaseModel):
    installation_number: str = Field(..., min_length=1, examples=["3015031311"])
    installation_type: InstallationType
    distributor_id: Optional[str] = None
    user_id: Optional[str] = None
    name: Optional[str] = None


class InstallationUpdate(BaseModel):
    installation_number: Optional[str] = None
    installation_type: Optional[InstallationType] = None
    distributor_id: Optional[str] = None
    user_id: Optional[str] = None
    name: Optional[str] = None


class InstallationResponse(BaseModel):
    id: str
    installation_number: str
    installation_type: InstallationType
    distributor_id: Optional[str] = None
    user_id: Optional[str] = None
    name: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Energy data ──────────────────────────────────────────────────────────

class UploadBatchResponse(BaseModel):
    id: str
    file_name: str
    distributor_id: Optional[str] = None
    uploaded_by: Optional[str] = None
    status: UploadStatus
    total_rows: int
    processed_rows: int
    error_rows: int
    not_found_rows: int
    auto_created: int
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Invoices ─────────────────────────────────────────────────────────────

class InvoiceCalculateRequest(BaseModel):
    kwh: Decimal
    rate: Decimal
    discount: Optional[Decimal] = Field(None, description="Fraction 0–1; defaults to the configured discount")


class InvoiceCalculationResponse(BaseModel):
    kwh: Decimal
    rate: Decimal
    discount: Decimal
    original_value: Decimal
    invoice_amount: Decimal
    savings: Decimal
    savings_percentage: Decimal
    effective_rate: Decimal
    co2_kg: Decimal
    trees: Decimal


class InvoiceGenerateRequest(BaseModel):
    user_id: str
    installation_ids: List[str] = Field(..., min_length=1)
    period: str
    rate: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    invoice_number: Optional[str] = None
    due_date: Optional[date] = None


class InvoiceCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class InvoiceResponse(BaseModel):
    id: str
    invoice_number: str
    user_id: str
    installation_id: Optional[str] = None
    period: str
    kwh_billed: Decimal
    kwh_rate: Decimal
    discount: Decimal
    amount: Decimal
    total_amount: Decimal
    savings: Decimal
    co2_avoided_kg: Decimal
    status: InvoiceStatus
    due_date: date
    paid_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class InvoiceTotalsResponse(BaseModel):
    count: int
    amount: Decimal
    savings: Decimal

    model_config = {"from_attributes": True}


class InvoiceStatsResponse(BaseModel):
    totals: InvoiceTotalsResponse
    by_status: Dict[str, InvoiceTotalsResponse]
    monthly: Dict[str, InvoiceTotalsResponse]

    model_config = {"from_attributes": True}


class RefreshOverdueResponse(BaseModel):
    changed: int


# ── Stats ────────────────────────────────────────────────────────────────

class StatsCalculateRequest(BaseModel):
    period_label: Optional[str] = Field(None, description="MM/YYYY, Qn/YYYY or YYYY; omit to refresh all")
    period_type: Optional[StatsPeriodType] = None
    kwh_price: Optional[Decimal] = None


class AggregateStatsResponse(BaseModel):
    period_label: str
    period_type: StatsPeriodType
    total_generation: Decimal
    total_consumption: Decimal
    total_transferred: Decimal
    total_compensation: Decimal
    total_credits_generated: Decimal
    average_generation_per_generator: Decimal
    estimated_savings: Decimal
    co2_reduction_kg: Decimal
    active_generators: int
    active_consumers: int
    calculated_at: datetime

    model_config = {"from_attributes": True}

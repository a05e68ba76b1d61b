"""
Domain exceptions for the RaaS billing core.

Every rule violation is raised before anything is written, so callers can
map these one-to-one onto transport errors without cleaning up partial state.
"""


class RaaSError(Exception):
    """Base class for all domain errors."""


# ── Ledger ──────────────────────────────────────────────────────────────

class LedgerValidationError(RaaSError):
    """Input rejected before computation: negative kWh, bad quota, bad period."""


class SequencingError(RaaSError):
    """Periods supplied out of order, duplicated, or already posted."""


class MissingPeriodError(SequencingError):
    """A period in the requested range has no raw input and the policy is 'fail'."""

    def __init__(self, installation_id: str, period) -> None:
        self.installation_id = installation_id
        self.period = period
        super().__init__(
            f"No energy reading for installation {installation_id} in period {period}"
        )


# ── Allocations ─────────────────────────────────────────────────────────

class AllocationError(RaaSError):
    pass


class AllocationNotFound(AllocationError):
    pass


class AllocationConflict(AllocationError):
    """An allocation between the same generator and consumer already exists."""


class InvalidQuota(AllocationError):
    """Quota is not a percentage in (0, 100]."""


class QuotaExceeded(AllocationError):
    """The generator's allocated quotas would sum to more than 100%."""


class InvalidInstallation(AllocationError):
    """Unknown installation, or an installation of the wrong type."""


# ── Distributors / installations ────────────────────────────────────────

class DistributorError(RaaSError):
    """Invalid distributor data, e.g. a non-positive kWh rate."""


class DistributorNotFound(DistributorError):
    pass


class DistributorConflict(DistributorError):
    """Name already taken, or the distributor is still referenced by installations or uploads."""


class InstallationError(RaaSError):
    pass


class InstallationNotFound(InstallationError):
    pass


class InstallationConflict(InstallationError):
    """Installation number taken, or the installation is referenced by ledger data."""


class PermissionDenied(RaaSError):
    pass


# ── Ingestion ───────────────────────────────────────────────────────────

class IngestionError(RaaSError):
    """The uploaded file cannot be read or contains no rows."""


# ── Invoices ────────────────────────────────────────────────────────────

class InvoiceError(RaaSError):
    pass


class InvoiceNotFound(InvoiceError):
    pass


class NoEnergyData(InvoiceError):
    """No ledger records exist for the requested installations and period."""


class InvalidInvoiceTransition(InvoiceError):
    """Paid or cancelled invoices cannot change status again."""


class DuplicateInvoiceNumber(InvoiceError):
    """An invoice with the requested number already exists."""

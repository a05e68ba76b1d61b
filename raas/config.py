"""
RaaS — Service Configuration
Centralises all environment-driven settings with sensible defaults.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All config sourced from environment / .env file."""

    # ── Postgres ─────────────────────────────────────────────────────────
    DB_HOST: str = "postgres"
    DB_PORT: int = 5432
    DB_NAME: str = "raas"
    DB_USER: str = "raas"
    DB_PASSWORD: str = "changeme"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DATABASE_URL: Optional[str] = None  # overrides the DB_* parts when set

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # ── Energy credit ledger ─────────────────────────────────────────────
    CREDIT_EXPIRY_MONTHS: int = 60
    LEDGER_MISSING_PERIOD_POLICY: str = "fail"  # fail | skip

    # ── Invoicing ────────────────────────────────────────────────────────
    DEFAULT_DISCOUNT: float = 0.20       # fraction of the distributor rate
    INVOICE_DUE_DAYS: int = 15           # after the end of the reference month
    KWH_TO_CO2_KG: float = 0.09          # kg CO₂ avoided per compensated kWh
    CO2_KG_PER_TREE: float = 22.0        # kg CO₂ absorbed by one tree per year

    # ── Statistics ───────────────────────────────────────────────────────
    DEFAULT_KWH_PRICE: float = 0.80      # used when no distributor rate applies

    # ── Ingestion ────────────────────────────────────────────────────────
    UPLOAD_MAX_ROWS: int = 50_000

    # ── Observability ────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

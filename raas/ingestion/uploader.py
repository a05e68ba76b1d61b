"""
RaaS — Energy Report Ingestion
==============================
Loads distributor energy reports (.xlsx / .xls / .csv) into energy_readings.

  upload ──→ pandas DataFrame ──→ per row:
                                   installation lookup ── unknown? ──→ not_found (or auto-create)
                                   period / kWh parsing ── invalid? ──→ errors
                                   upsert reading (installation, period)

Row failures are counted on the upload batch and never abort it. A file that
cannot be read, has no rows, or names an unknown distributor is rejected before
a batch is created.
"""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import PurePath
from typing import List, Optional

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..business.billing_models import (
    Distributor, EnergyReading, Installation, UploadBatch, UploadStatus,
    get_installation_by_number,
)
from ..business.exceptions import IngestionError, LedgerValidationError
from ..business.ledger import InstallationType, to_kwh
from ..business.periods import Period
from ..config import settings

logger = logging.getLogger("raas.ingestion")

# ── Report contract ──────────────────────────────────────────────────────
# Distributor reports use Portuguese headers; the first matching alias wins.

COLUMN_ALIASES = {
    "installation_number": ("Instalação", "Instalacao", "instalacao", "instalação"),
    "period": ("Período", "Periodo", "Data"),
    "modality": ("Modalidade",),
    "consumption": ("Consumo",),
    "generation": ("Geração", "Geracao"),
}

EXCEL_SUFFIXES = frozenset({".xlsx", ".xls"})
CSV_SUFFIXES = frozenset({".csv"})


# ─────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────

def read_report(content: bytes, filename: str) -> pd.DataFrame:
    suffix = PurePath(filename or "").suffix.lower()
    buffer = io.BytesIO(content)
    try:
        if suffix in EXCEL_SUFFIXES:
            df = pd.read_excel(buffer, sheet_name=0, dtype=str)
        elif suffix in CSV_SUFFIXES:
            df = pd.read_csv(buffer, sep=None, engine="python", dtype=str, encoding="utf-8-sig")
        else:
            raise IngestionError(f"Unsupported file type {suffix or '(none)'}; use .xlsx, .xls or .csv")
    except (ValueError, csv.Error, zipfile.BadZipFile, pd.errors.ParserError) as exc:
        raise IngestionError(f"Cannot read {filename}: {exc}") from exc

    df.columns = [str(c).strip() for c in df.columns]
    df = df.dropna(how="all")
    if df.empty:
        raise IngestionError(f"{filename} contains no data rows")
    if len(df) > settings.UPLOAD_MAX_ROWS:
        raise IngestionError(
            f"{filename} has {len(df)} rows; at most {settings.UPLOAD_MAX_ROWS} are accepted"
        )
    return df


def _pick(row: dict, field: str):
    for alias in COLUMN_ALIASES[field]:
        value = row.get(alias)
        if value is None or pd.isna(value):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def parse_number(value) -> Decimal:
    """
    Parse a report number. Empty cells are zero. Accepts decimal commas,
    with or without dot thousands separators ("1.234,56").
    """
    if value is None:
        return Decimal("0")
    text = str(value).strip().replace(" ", "")
    if not text:
        return Decimal("0")
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        raise LedgerValidationError(f"Invalid number {value!r}") from None


def parse_period(value) -> Period:
    """"MM/YYYY", or any date pandas understands (spreadsheet date cells)."""
    try:
        return Period.parse(value)
    except LedgerValidationError:
        pass
    text = str(value)
    try:
        ts = pd.to_datetime(text, dayfirst="/" in text)
    except (ValueError, TypeError):
        raise LedgerValidationError(f"Invalid period {value!r}") from None
    if pd.isna(ts):
        raise LedgerValidationError(f"Invalid period {value!r}")
    return Period(ts.year, ts.month)


def infer_installation_type(modality: Optional[str]) -> InstallationType:
    if modality and "geradora" in modality.lower():
        return InstallationType.GENERATOR
    return InstallationType.CONSUMER


# ─────────────────────────────────────────────
# Ingestion
# ─────────────────────────────────────────────

def _upsert_reading(
    session: Session, installation: Installation, period: Period,
    consumption: Decimal, generation: Decimal, batch_id: str,
) -> None:
    reading = session.execute(
        select(EnergyReading).where(
            EnergyReading.installation_id == installation.id,
            EnergyReading.period_key == period.key,
        )
    ).scalars().first()
    if reading is None:
        reading = EnergyReading(installation_id=installation.id, period=str(period), period_key=period.key)
        session.add(reading)
    reading.consumption = consumption
    reading.generation = generation
    reading.upload_batch_id = batch_id


def ingest_report(
    session: Session,
    content: bytes,
    filename: str,
    distributor_id: Optional[str] = None,
    auto_create: bool = False,
    uploaded_by: Optional[str] = None,
) -> UploadBatch:
    df = read_report(content, filename)
    if distributor_id and session.get(Distributor, distributor_id) is None:
        raise IngestionError(f"Unknown distributor {distributor_id}")

    batch = UploadBatch(
        file_name=filename,
        distributor_id=distributor_id,
        uploaded_by=uploaded_by,
        status=UploadStatus.PROCESSING,
        total_rows=len(df),
    )
    session.add(batch)
    session.flush()

    processed = errors = not_found = auto_created = 0
    for line, row in enumerate(df.to_dict("records"), start=2):
        number = _pick(row, "installation_number")
        if number is None:
            logger.warning("%s line %d: installation number missing", filename, line)
            errors += 1
            continue

        installation = get_installation_by_number(session, number)
        if installation is None:
            if not (auto_create and distributor_id):
                logger.warning("%s line %d: installation %s not found", filename, line, number)
                not_found += 1
                continue
            installation = Installation(
                installation_number=number,
                installation_type=infer_installation_type(_pick(row, "modality")),
                distributor_id=distributor_id,
            )
            session.add(installation)
            session.flush()
            auto_created += 1
            logger.info(
                "%s line %d: created %s installation %s",
                filename, line, installation.installation_type.value, number,
            )

        raw_period = _pick(row, "period")
        if raw_period is None:
            logger.warning("%s line %d: period missing", filename, line)
            errors += 1
            continue

        try:
            period = parse_period(raw_period)
            consumption = to_kwh(parse_number(_pick(row, "consumption")), "consumption")
            generation = to_kwh(parse_number(_pick(row, "generation")), "generation")
        except LedgerValidationError as exc:
            logger.warning("%s line %d: %s", filename, line, exc)
            errors += 1
            continue

        _upsert_reading(session, installation, period, consumption, generation, batch.id)
        processed += 1

    batch.processed_rows = processed
    batch.error_rows = errors
    batch.not_found_rows = not_found
    batch.auto_created = auto_created
    batch.status = UploadStatus.COMPLETED
    batch.completed_at = datetime.now(timezone.utc)
    session.flush()

    logger.info(
        "Upload %s (%s): %d rows, %d processed, %d errors, %d not found, %d created",
        batch.id, filename, batch.total_rows, processed, errors, not_found, auto_created,
    )
    return batch


def upload_history(session: Session, limit: int = 50) -> List[UploadBatch]:
    q = select(UploadBatch).order_by(UploadBatch.created_at.desc(), UploadBatch.id).limit(limit)
    return list(session.execute(q).scalars().all())

import io
from decimal import Decimal

import pandas as pd
import pytest
from sqlalchemy import select

from raas.business.billing_models import EnergyReading, UploadStatus, get_installation_by_number
from raas.business.exceptions import IngestionError, LedgerValidationError
from raas.business.ledger import InstallationType
from raas.business.periods import Period
from raas.ingestion.uploader import (
    infer_installation_type, ingest_report, parse_number, parse_period, upload_history,
)

HEADERS = ["Instalação", "Período", "Modalidade", "Consumo", "Geração"]


def _xlsx(rows) -> bytes:
    buf = io.BytesIO()
    pd.DataFrame(rows, columns=HEADERS).to_excel(buf, index=False, engine="openpyxl")
    return buf.getvalue()


def _csv(rows) -> bytes:
    lines = [",".join(HEADERS)] + [",".join(str(v) for v in row) for row in rows]
    return ("\n".join(lines) + "\n").encode("utf-8")


def _readings(session, installation):
    q = select(EnergyReading).where(EnergyReading.installation_id == installation.id)
    return list(session.execute(q).scalars().all())


# ── Field parsing ────────────────────────────────────────────────────────

def test_parse_number_formats():
    assert parse_number("1.234,56") == Decimal("1234.56")
    assert parse_number("12,5") == Decimal("12.5")
    assert parse_number("1500") == Decimal("1500")
    assert parse_number("") == Decimal("0")
    assert parse_number(None) == Decimal("0")
    with pytest.raises(LedgerValidationError):
        parse_number("n/a")


def test_parse_period_formats():
    assert parse_period("01/2026") == Period(2026, 1)
    assert parse_period("2026-03-01 00:00:00") == Period(2026, 3)
    with pytest.raises(LedgerValidationError):
        parse_period("abc")


def test_modality_decides_type():
    assert infer_installation_type("Geradora") == InstallationType.GENERATOR
    assert infer_installation_type("Beneficiária") == InstallationType.CONSUMER
    assert infer_installation_type(None) == InstallationType.CONSUMER


# ── Report ingestion ─────────────────────────────────────────────────────

def test_xlsx_rows_counted_by_outcome(session, pool):
    gen, c1, _ = pool
    content = _xlsx([
        ["3015031311", "01/2026", "Geradora", "200", "15000"],
        ["3004402254", "01/2026", "Beneficiária", "1.234,56", None],
        ["9999999999", "01/2026", "Beneficiária", "10", None],
        ["3004402254", "abc", "Beneficiária", "10", None],
        [None, "01/2026", "Beneficiária", "10", None],
    ])
    batch = ingest_report(session, content, "cemig-jan.xlsx")

    assert batch.status == UploadStatus.COMPLETED
    assert batch.total_rows == 5
    assert batch.processed_rows == 2
    assert batch.error_rows == 2
    assert batch.not_found_rows == 1
    assert batch.auto_created == 0

    (gen_reading,) = _readings(session, gen)
    assert gen_reading.generation == Decimal("15000")
    assert gen_reading.consumption == Decimal("200")
    (c1_reading,) = _readings(session, c1)
    assert c1_reading.consumption == Decimal("1234.56")
    assert c1_reading.generation == Decimal("0")
    assert c1_reading.upload_batch_id == batch.id


def test_csv_reupload_replaces_reading(session, pool):
    _, c1, _ = pool
    ingest_report(session, _csv([["3004402254", "01/2026", "Beneficiária", 500, 0]]), "a.csv")
    ingest_report(session, _csv([["3004402254", "01/2026", "Beneficiária", 650, 0]]), "b.csv")

    (reading,) = _readings(session, c1)
    assert reading.consumption == Decimal("650")
    assert len(upload_history(session)) == 2


def test_auto_create_needs_distributor(session, distributor):
    rows = [
        ["3015031313", "02/2026", "Geradora", 120, 9000],
        ["3011883119", "02/2026", "Beneficiária", 4000, 0],
    ]
    batch = ingest_report(session, _csv(rows), "feb.csv", auto_create=True)
    assert batch.not_found_rows == 2
    assert batch.auto_created == 0

    batch = ingest_report(
        session, _csv(rows), "feb.csv", distributor_id=distributor.id, auto_create=True,
    )
    assert batch.auto_created == 2
    assert batch.processed_rows == 2
    created = get_installation_by_number(session, "3015031313")
    assert created.installation_type == InstallationType.GENERATOR
    assert created.distributor_id == distributor.id
    assert get_installation_by_number(session, "3011883119").installation_type == InstallationType.CONSUMER


def test_negative_reading_is_a_row_error(session, pool):
    batch = ingest_report(session, _csv([["3004402254", "01/2026", "Beneficiária", -5, 0]]), "neg.csv")
    assert batch.error_rows == 1
    assert batch.processed_rows == 0


@pytest.mark.parametrize("content, filename", [
    (b"", "empty.csv"),
    (",".join(HEADERS).encode("utf-8") + b"\n", "header-only.csv"),
    (b"not a workbook", "broken.xlsx"),
    (b"whatever", "report.pdf"),
])
def test_unreadable_files_rejected(session, content, filename):
    with pytest.raises(IngestionError):
        ingest_report(session, content, filename)
    assert upload_history(session) == []


def test_unknown_distributor_rejected_before_any_write(session, pool):
    rows = [["3015031399", "02/2026", "Geradora", 120, 9000]]
    with pytest.raises(IngestionError):
        ingest_report(
            session, _csv(rows), "feb.csv", distributor_id="no-such-distributor", auto_create=True,
        )
    assert upload_history(session) == []
    assert get_installation_by_number(session, "3015031399") is None

import json

from sqlalchemy import func, select

from raas.business.billing_models import Allocation, EnergyReading, Installation
from raas.business.periods import Period
from raas.db.seed import seed
from raas.ingestion.uploader import ingest_report
from raas.simulator.__main__ import main, render, to_rows
from raas.simulator.demo_pool import INSTALLATIONS, SHARES, simulate


def _count(session, model):
    return session.execute(select(func.count(model.id))).scalar_one()


def test_same_seed_same_ledger():
    assert simulate(Period(2023, 1), 3, seed=7) == simulate(Period(2023, 1), 3, seed=7)
    assert simulate(Period(2023, 1), 3, seed=7) != simulate(Period(2023, 1), 3, seed=8)


def test_every_installation_gets_every_month():
    records = simulate(Period(2023, 11), 4)
    assert set(records) == {inst.number for inst in INSTALLATIONS}
    for inst_records in records.values():
        assert [str(r.period) for r in inst_records] == ["11/2023", "12/2023", "01/2024", "02/2024"]


def test_csv_uses_report_headers():
    rows = to_rows(simulate(Period(2023, 1), 2))
    assert len(rows) == len(INSTALLATIONS) * 2
    header = render(rows, "csv").splitlines()[0]
    assert header.startswith("Instalação,Período,Modalidade,Consumo,Geração")


def test_main_writes_json(tmp_path):
    out = tmp_path / "ledger.json"
    assert main(["--months", "2", "--format", "json", "-o", str(out)]) == 0
    rows = json.loads(out.read_text(encoding="utf-8"))
    assert len(rows) == len(INSTALLATIONS) * 2
    assert rows[0]["period"] == "01/2023"


def test_main_rejects_bad_start():
    assert main(["--start", "13/2023"]) == 1


def test_seed_is_idempotent(session):
    first = seed(session, months=2, start=Period(2025, 1))
    second = seed(session, months=2, start=Period(2025, 1))
    assert first == second
    assert _count(session, Installation) == len(INSTALLATIONS)
    assert _count(session, Allocation) == len(SHARES)
    assert _count(session, EnergyReading) == len(INSTALLATIONS) * 2


def test_simulated_report_can_be_uploaded(session):
    seed(session)
    content = render(to_rows(simulate(Period(2024, 1), 2)), "csv").encode("utf-8")
    batch = ingest_report(session, content, "simulated.csv")
    assert batch.processed_rows == len(INSTALLATIONS) * 2
    assert batch.error_rows == 0
    assert batch.not_found_rows == 0

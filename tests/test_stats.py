from datetime import date
from decimal import Decimal

import pytest

from raas.business.billing_models import StatsPeriodType
from raas.business.ledger_service import post_pool
from raas.business.stats import calculate_stats, get_stats, refresh_all, refresh_labels


@pytest.fixture
def january(session, pool, add_reading):
    gen, c1, c2 = pool
    add_reading(gen, "01/2026", 200, 15000)
    add_reading(c1, "01/2026", 5000)
    add_reading(c2, "01/2026", 1000)
    post_pool(session, [gen.id], "01/2026", "01/2026")


def test_monthly_totals(session, january):
    row = calculate_stats(session, "01/2026", "monthly")
    assert row.total_generation == Decimal("15000")
    assert row.total_transferred == Decimal("14800")
    assert row.total_consumption == Decimal("6000")
    assert row.total_compensation == Decimal("6000")
    assert row.total_credits_generated == Decimal("5100")
    assert row.average_generation_per_generator == Decimal("15000")
    assert row.estimated_savings == Decimal("4800.00")
    assert row.co2_reduction_kg == Decimal("1350.00")
    assert row.active_generators == 1
    assert row.active_consumers == 2


def test_custom_price(session, january):
    row = calculate_stats(session, "01/2026", StatsPeriodType.MONTHLY, kwh_price=1)
    assert row.estimated_savings == Decimal("6000.00")


def test_recalculation_updates_in_place(session, january):
    first = calculate_stats(session, "Q1/2026", "quarterly")
    second = calculate_stats(session, "Q1/2026", "quarterly")
    assert first.id == second.id
    assert len(get_stats(session, "quarterly")) == 1


def test_period_without_data_is_skipped(session, january):
    assert calculate_stats(session, "02/2026", "monthly") is None
    assert get_stats(session) == []


def test_refresh_labels():
    labels = refresh_labels(date(2026, 10, 18))
    assert len(labels) == 24 + 8 + 5
    assert labels[0] == ("10/2026", StatsPeriodType.MONTHLY)
    assert ("11/2024", StatsPeriodType.MONTHLY) in labels
    assert ("Q1/2025", StatsPeriodType.QUARTERLY) in labels
    assert labels[-1] == ("2022", StatsPeriodType.YEARLY)


def test_refresh_all_only_keeps_periods_with_data(session, january):
    rows = refresh_all(session, today=date(2026, 2, 1))
    assert sorted((r.period_type.value, r.period_label) for r in rows) == [
        ("monthly", "01/2026"), ("quarterly", "Q1/2026"), ("yearly", "2026"),
    ]

from decimal import Decimal

import pytest

from raas.business.exceptions import LedgerValidationError, MissingPeriodError, SequencingError
from raas.business.ledger import (
    InstallationType, MissingPeriodPolicy, PeriodInput, QuotaShare, consumer_step,
    generator_step, received_share, run_installation_ledger, run_pool_ledger,
)
from raas.business.periods import Period, period_range

GEN = InstallationType.GENERATOR
CON = InstallationType.CONSUMER
JAN, FEB, MAR = Period(2026, 1), Period(2026, 2), Period(2026, 3)


# ── Generator step ───────────────────────────────────────────────────────

def test_generator_surplus_after_own_consumption():
    assert generator_step(15000, 200) == Decimal("14800")


def test_generator_never_transfers_negative():
    assert generator_step(100, 250) == Decimal("0")
    assert generator_step(0, 0) == Decimal("0")


@pytest.mark.parametrize("generation, consumption", [(-1, 0), (0, -5), (None, 10)])
def test_generator_rejects_negative_or_missing(generation, consumption):
    with pytest.raises(LedgerValidationError):
        generator_step(generation, consumption)


# ── Consumer step ────────────────────────────────────────────────────────

def test_received_share_is_quota_of_full_surplus():
    assert received_share(Decimal("14800"), Decimal("0.55")) == Decimal("8140")
    assert received_share(Decimal("14800"), Decimal("0.20")) == Decimal("2960")


@pytest.mark.parametrize("quota", [Decimal("-0.1"), Decimal("1.01"), "abc"])
def test_received_share_rejects_bad_quota(quota):
    with pytest.raises(LedgerValidationError):
        received_share(100, quota)


def test_consumer_step_with_surplus_credit():
    result = consumer_step(previous_balance=0, consumption=5000, received=Decimal("8140"))
    assert result.available == Decimal("8140")
    assert result.compensation == Decimal("5000")
    assert result.current_balance == Decimal("3140")
    assert result.expiring_balance_amount == Decimal("3140")


def test_consumer_step_draws_down_balance():
    result = consumer_step(previous_balance=Decimal("3140"), consumption=10000, received=0)
    assert result.compensation == Decimal("3140")
    assert result.current_balance == Decimal("0")
    assert result.expiring_balance_amount == Decimal("0")


def test_consumer_step_nothing_available():
    result = consumer_step(previous_balance=0, consumption=700, received=0)
    assert result.compensation == Decimal("0")
    assert result.current_balance == Decimal("0")


def test_consumer_step_rejects_negative_consumption():
    with pytest.raises(LedgerValidationError):
        consumer_step(previous_balance=0, consumption=-1, received=0)


def test_values_quantized_to_four_places():
    result = consumer_step(previous_balance="0.00005", consumption="0", received="1.23456")
    assert result.current_balance == Decimal("1.2347")


@pytest.mark.parametrize("previous_balance, consumption, received", [
    (0, 0, 0),
    (Decimal("3140"), 10000, 0),
    (0, 5000, Decimal("8140")),
    ("12.34567", "5", "7.5"),
    (100, 50, 25),
])
def test_consumer_step_is_pure(previous_balance, consumption, received):
    first = consumer_step(previous_balance, consumption, received)
    second = consumer_step(previous_balance, consumption, received)
    assert first == second
    # an empty month leaves the balance where it was
    idle = consumer_step(first.current_balance, 0, 0)
    assert idle.current_balance == first.current_balance
    assert idle.compensation == Decimal("0")


# ── Single-installation driver ───────────────────────────────────────────

def test_consumer_sequence_threads_balance_and_sets_expiry():
    records = run_installation_ledger(
        "c1", CON,
        [PeriodInput.of(JAN, 5000), PeriodInput.of(FEB, 10000)],
        quota=Decimal("0.55"),
        transferred_by_period={JAN: Decimal("14800")},
    )
    jan, feb = records
    assert jan.received == Decimal("8140")
    assert jan.compensation == Decimal("5000")
    assert jan.current_balance == Decimal("3140")
    assert jan.expiring_balance_period == Period(2031, 1)

    assert feb.previous_balance == Decimal("3140")
    assert feb.received == Decimal("0")
    assert feb.compensation == Decimal("3140")
    assert feb.current_balance == Decimal("0")
    assert feb.expiring_balance_period is None


def test_generator_records_carry_no_balance():
    (rec,) = run_installation_ledger("g1", GEN, [PeriodInput.of(JAN, 200, 15000)])
    assert rec.transferred == Decimal("14800")
    assert rec.compensation == Decimal("200")
    assert rec.current_balance == Decimal("0")
    assert rec.expiring_balance_period is None


def test_expiry_horizon_is_configurable():
    (rec,) = run_installation_ledger(
        "c1", CON, [PeriodInput.of(JAN, 0)], opening_balance=10, expiry_months=12,
    )
    assert rec.expiring_balance_period == Period(2027, 1)


def test_out_of_order_periods_rejected():
    with pytest.raises(SequencingError):
        run_installation_ledger("c1", CON, [PeriodInput.of(FEB, 1), PeriodInput.of(JAN, 1)])


def test_duplicate_period_rejected():
    with pytest.raises(SequencingError):
        run_installation_ledger("c1", CON, [PeriodInput.of(JAN, 1), PeriodInput.of(JAN, 2)])


def test_missing_period_fails_by_default():
    with pytest.raises(MissingPeriodError) as exc:
        run_installation_ledger(
            "c1", CON, [PeriodInput.of(JAN, 100), PeriodInput.of(MAR, 100)], opening_balance=500,
        )
    assert exc.value.period == FEB
    assert exc.value.installation_id == "c1"


def test_missing_period_skip_carries_balance():
    records = run_installation_ledger(
        "c1", CON,
        [PeriodInput.of(JAN, 100), PeriodInput.of(MAR, 100)],
        opening_balance=500,
        policy=MissingPeriodPolicy.SKIP,
    )
    assert [r.period for r in records] == [JAN, MAR]
    assert records[0].current_balance == Decimal("400")
    assert records[1].previous_balance == Decimal("400")
    assert records[1].current_balance == Decimal("300")


def test_explicit_range_must_be_contiguous():
    with pytest.raises(SequencingError):
        run_installation_ledger("c1", CON, [PeriodInput.of(JAN, 1)], periods=[JAN, MAR])


def test_consumer_needs_quota_to_receive():
    with pytest.raises(LedgerValidationError):
        run_installation_ledger(
            "c1", CON, [PeriodInput.of(JAN, 1)], transferred_by_period={JAN: 100},
        )


def test_unknown_policy_rejected():
    with pytest.raises(LedgerValidationError):
        run_installation_ledger("c1", CON, [PeriodInput.of(JAN, 1)], policy="ignore")


def test_balance_is_path_dependent():
    """Same monthly totals in a different order give a different final balance."""
    def final_balance(received, consumption):
        inputs = [PeriodInput.of(p, c) for p, c in zip((JAN, FEB), consumption)]
        transferred = dict(zip((JAN, FEB), received))
        return run_installation_ledger(
            "c1", CON, inputs, quota=1, transferred_by_period=transferred,
        )[-1].current_balance

    # surplus first, then demand: credit is carried and used
    assert final_balance([1000, 0], [0, 1000]) == Decimal("0")
    # demand first, then surplus: credit arrives too late and is carried
    assert final_balance([0, 1000], [1000, 0]) == Decimal("1000")


@pytest.mark.parametrize("opening, received, consumption", [
    (0, [0, 1000, 500], [800, 200, 300]),
    (100, [50, 0, 2000], [400, 300, 100]),
    (0, [Decimal("12.5"), 7, 0], [20, 0, Decimal("5.25")]),
])
def test_three_months_chain_like_the_driver(opening, received, consumption):
    months = (JAN, FEB, MAR)
    balance = Decimal(str(opening))
    chained = []
    for r, c in zip(received, consumption):
        step = consumer_step(balance, c, r)
        chained.append(step)
        balance = step.current_balance

    records = run_installation_ledger(
        "c1", CON,
        [PeriodInput.of(p, c) for p, c in zip(months, consumption)],
        quota=1,
        transferred_by_period=dict(zip(months, (Decimal(str(r)) for r in received))),
        opening_balance=opening,
    )
    assert [r.compensation for r in records] == [s.compensation for s in chained]
    assert [r.current_balance for r in records] == [s.current_balance for s in chained]

    # one step over the quarter's totals loses the month-by-month ordering
    lump = consumer_step(opening, sum(Decimal(str(c)) for c in consumption),
                         sum(Decimal(str(r)) for r in received))
    assert lump.current_balance != chained[-1].current_balance


# ── Pool driver ──────────────────────────────────────────────────────────

def _pool_types():
    return {"g1": GEN, "g2": GEN, "c1": CON, "c2": CON}


def test_pool_splits_surplus_by_quota_and_forfeits_rest():
    shares = [QuotaShare("g1", "c1", Decimal("55")), QuotaShare("g1", "c2", Decimal("20"))]
    readings = {
        "g1": [PeriodInput.of(JAN, 200, 15000)],
        "c1": [PeriodInput.of(JAN, 5000)],
        "c2": [PeriodInput.of(JAN, 1000)],
    }
    types = {"g1": GEN, "c1": CON, "c2": CON}
    records = run_pool_ledger(types, shares, readings, [JAN])

    assert records["g1"][0].transferred == Decimal("14800")
    assert records["c1"][0].received == Decimal("8140")
    assert records["c1"][0].current_balance == Decimal("3140")
    assert records["c2"][0].received == Decimal("2960")
    assert records["c2"][0].current_balance == Decimal("1960")
    distributed = records["c1"][0].received + records["c2"][0].received
    assert distributed == Decimal("11100")  # 25% of the surplus is not allocated


def test_pool_consumer_with_two_generators_receives_sum():
    shares = [QuotaShare("g1", "c1", Decimal("50")), QuotaShare("g2", "c1", Decimal("10"))]
    readings = {
        "g1": [PeriodInput.of(JAN, 0, 1000)],
        "g2": [PeriodInput.of(JAN, 0, 2000)],
        "c1": [PeriodInput.of(JAN, 0)],
        "c2": [PeriodInput.of(JAN, 0)],
    }
    records = run_pool_ledger(_pool_types(), shares, readings, [JAN])
    assert records["c1"][0].received == Decimal("700")
    assert records["c2"][0].received == Decimal("0")


def test_pool_matches_single_installation_driver():
    shares = [QuotaShare("g1", "c1", Decimal("55"))]
    gen_inputs = [PeriodInput.of(p, 200, g) for p, g in zip((JAN, FEB, MAR), (15000, 3000, 9000))]
    con_inputs = [PeriodInput.of(p, c) for p, c in zip((JAN, FEB, MAR), (5000, 6000, 2000))]
    pool = run_pool_ledger(
        {"g1": GEN, "c1": CON}, shares, {"g1": gen_inputs, "c1": con_inputs}, [JAN, FEB, MAR],
    )
    transferred = {r.period: r.transferred for r in pool["g1"]}
    single = run_installation_ledger(
        "c1", CON, con_inputs, quota=Decimal("0.55"), transferred_by_period=transferred,
    )
    assert pool["c1"] == single


def test_pool_opening_balances():
    records = run_pool_ledger(
        {"c1": CON}, [], {"c1": [PeriodInput.of(JAN, 100)]}, [JAN],
        opening_balances={"c1": Decimal("250")},
    )
    assert records["c1"][0].previous_balance == Decimal("250")
    assert records["c1"][0].current_balance == Decimal("150")


def test_pool_missing_generator_reading_fails_fast():
    shares = [QuotaShare("g1", "c1", Decimal("55"))]
    readings = {"g1": [PeriodInput.of(JAN, 0, 100)], "c1": [PeriodInput.of(JAN, 0), PeriodInput.of(FEB, 0)]}
    with pytest.raises(MissingPeriodError) as exc:
        run_pool_ledger({"g1": GEN, "c1": CON}, shares, readings, [JAN, FEB])
    assert exc.value.installation_id == "g1"


def test_pool_skip_policy_generator_gap_transfers_nothing():
    shares = [QuotaShare("g1", "c1", Decimal("100"))]
    readings = {"g1": [PeriodInput.of(JAN, 0, 100)], "c1": [PeriodInput.of(JAN, 0), PeriodInput.of(FEB, 50)]}
    records = run_pool_ledger(
        {"g1": GEN, "c1": CON}, shares, readings, [JAN, FEB], policy="skip",
    )
    assert len(records["g1"]) == 1
    feb = records["c1"][1]
    assert feb.received == Decimal("0")
    assert feb.previous_balance == Decimal("100")
    assert feb.current_balance == Decimal("50")


def test_pool_rejects_wrong_installation_types():
    with pytest.raises(LedgerValidationError):
        run_pool_ledger({"c1": CON, "c2": CON}, [QuotaShare("c1", "c2", Decimal("10"))], {}, [])


def test_pool_rejects_unknown_references():
    with pytest.raises(LedgerValidationError):
        run_pool_ledger({"g1": GEN}, [QuotaShare("g1", "nope", Decimal("10"))], {}, [])
    with pytest.raises(LedgerValidationError):
        run_pool_ledger({"g1": GEN}, [], {"ghost": [PeriodInput.of(JAN, 1)]}, [JAN])


def test_pool_balances_never_negative_over_a_year():
    shares = [QuotaShare("g1", "c1", Decimal("60")), QuotaShare("g1", "c2", Decimal("30"))]
    periods = period_range(Period(2025, 1), Period(2025, 12))
    readings = {
        "g1": [PeriodInput.of(p, 150, 1000 * (i % 5)) for i, p in enumerate(periods)],
        "c1": [PeriodInput.of(p, 700 + 100 * (i % 3)) for i, p in enumerate(periods)],
        "c2": [PeriodInput.of(p, 400) for p in periods],
    }
    records = run_pool_ledger({"g1": GEN, "c1": CON, "c2": CON}, shares, readings, periods)
    for rec in records["c1"] + records["c2"]:
        assert rec.current_balance >= 0
        assert rec.compensation <= rec.consumption
        assert rec.compensation <= rec.previous_balance + rec.received

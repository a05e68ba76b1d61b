"""
Demo generator pool.

Three solar roofs, each sharing its surplus with two consumers:

    3015031311 ──55%──→ 3004402254
               ──20%──→ 3011883117
    3015031312 ──60%──→ 3004402255
               ──30%──→ 3011883118
    3015031313 ──50%──→ 3004402256
               ──35%──→ 3011883119

Readings are drawn from a seeded random.Random, so a given seed always
produces the same dataset.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from ..business.ledger import (
    InstallationType, LedgerRecord, PeriodInput, QuotaShare, run_pool_ledger,
)
from ..business.periods import Period, period_range

GENERATOR_CONSUMPTION = (50, 200)        # kWh, on-site load of a roof
GENERATOR_GENERATION = (1_000, 15_000)   # kWh per month
CONSUMER_CONSUMPTION = (1_000, 10_000)   # kWh per month


@dataclass(frozen=True)
class DemoInstallation:
    number: str
    installation_type: InstallationType
    modality: str


GENERATORS = [
    DemoInstallation("3015031311", InstallationType.GENERATOR, "Auto Consumo-Geradora"),
    DemoInstallation("3015031312", InstallationType.GENERATOR, "Auto Consumo-Geradora"),
    DemoInstallation("3015031313", InstallationType.GENERATOR, "Auto Consumo-Geradora"),
]

CONSUMERS = [
    DemoInstallation("3004402254", InstallationType.CONSUMER, "Auto Consumo-Recebedora"),
    DemoInstallation("3011883117", InstallationType.CONSUMER, "Auto Consumo-Recebedora"),
    DemoInstallation("3004402255", InstallationType.CONSUMER, "Auto Consumo-Recebedora"),
    DemoInstallation("3011883118", InstallationType.CONSUMER, "Auto Consumo-Recebedora"),
    DemoInstallation("3004402256", InstallationType.CONSUMER, "Auto Consumo-Recebedora"),
    DemoInstallation("3011883119", InstallationType.CONSUMER, "Auto Consumo-Recebedora"),
]

SHARES = [
    QuotaShare("3015031311", "3004402254", Decimal("55")),
    QuotaShare("3015031311", "3011883117", Decimal("20")),
    QuotaShare("3015031312", "3004402255", Decimal("60")),
    QuotaShare("3015031312", "3011883118", Decimal("30")),
    QuotaShare("3015031313", "3004402256", Decimal("50")),
    QuotaShare("3015031313", "3011883119", Decimal("35")),
]

INSTALLATIONS = GENERATORS + CONSUMERS


def generate_readings(
    periods: List[Period], seed: Optional[int] = 42,
) -> Dict[str, List[PeriodInput]]:
    """Monthly raw readings for every demo installation."""
    rng = random.Random(seed)
    readings: Dict[str, List[PeriodInput]] = {inst.number: [] for inst in INSTALLATIONS}
    for period in periods:
        for inst in GENERATORS:
            readings[inst.number].append(PeriodInput.of(
                period,
                consumption=rng.randint(*GENERATOR_CONSUMPTION),
                generation=rng.randint(*GENERATOR_GENERATION),
            ))
        for inst in CONSUMERS:
            readings[inst.number].append(PeriodInput.of(
                period, consumption=rng.randint(*CONSUMER_CONSUMPTION),
            ))
    return readings


def simulate(
    start: Period, months: int, seed: Optional[int] = 42, policy=None,
) -> Dict[str, List[LedgerRecord]]:
    """Generate readings for `months` months from `start` and run the pool ledger over them."""
    periods = period_range(start, start.plus_months(months - 1))
    readings = generate_readings(periods, seed)
    return run_pool_ledger(
        {inst.number: inst.installation_type for inst in INSTALLATIONS},
        SHARES,
        readings,
        periods,
        policy=policy,
    )


def modality_of(number: str) -> str:
    return next(inst.modality for inst in INSTALLATIONS if inst.number == number)

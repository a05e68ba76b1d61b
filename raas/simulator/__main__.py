"""
RaaS — Ledger Simulator

Generates a seeded multi-month dataset for the demo pool, runs it through the
pool ledger and writes the result in the distributor report layout (CSV) or
as JSON.

Usage:
    python -m raas.simulator --start 01/2023 --months 12
    python -m raas.simulator --format json --seed 7 --output ledger.json

The CSV output carries the report headers (Instalação, Período, Modalidade,
Consumo, Geração), so it can be uploaded back through /energy-data/upload.
"""

import argparse
import json
import logging
import sys

import pandas as pd

from ..business.exceptions import RaaSError
from ..business.periods import Period
from ..config import settings
from .demo_pool import modality_of, simulate

logger = logging.getLogger("raas.simulator")

REPORT_COLUMNS = {
    "installation_id": "Instalação",
    "period": "Período",
    "modality": "Modalidade",
    "consumption": "Consumo",
    "generation": "Geração",
    "transferred": "Transferido",
    "received": "Recebimento",
    "compensation": "Compensação",
    "previous_balance": "Saldo Anterior",
    "current_balance": "Saldo Atual",
    "expiring_balance_amount": "Quantidade Saldo a Expirar",
    "expiring_balance_period": "Período Saldo a Expirar",
}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="python -m raas.simulator", description=__doc__.split("\n\n")[1])
    parser.add_argument("--start", default="01/2023", help="first period, MM/YYYY (default: 01/2023)")
    parser.add_argument("--months", type=int, default=12, help="number of months (default: 12)")
    parser.add_argument("--seed", type=int, default=42, help="random seed (default: 42)")
    parser.add_argument("--format", choices=("csv", "json"), default="csv")
    parser.add_argument("--output", "-o", help="output file (default: stdout)")
    args = parser.parse_args(argv)
    if args.months < 1:
        parser.error("--months must be at least 1")
    return args


def to_rows(records) -> list:
    rows = []
    for inst_records in records.values():
        for rec in inst_records:
            row = rec.to_dict()
            row["modality"] = modality_of(rec.installation_id)
            rows.append(row)
    rows.sort(key=lambda r: (Period.parse(r["period"]), r["installation_id"]))
    return rows


def render(rows: list, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(rows, indent=2, default=str, ensure_ascii=False)
    df = pd.DataFrame(rows, columns=list(REPORT_COLUMNS)).rename(columns=REPORT_COLUMNS)
    return df.to_csv(index=False)


def main(argv=None) -> int:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )
    args = parse_args(argv)
    try:
        records = simulate(Period.parse(args.start), args.months, seed=args.seed)
    except RaaSError as exc:
        logger.error("Simulation failed: %s", exc)
        return 1

    rows = to_rows(records)
    output = render(rows, args.format)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as fh:
            fh.write(output)
        logger.info("Wrote %d ledger rows to %s", len(rows), args.output)
    else:
        sys.stdout.write(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Seeded demo pool and the ledger simulator CLI (python -m raas.simulator)."""

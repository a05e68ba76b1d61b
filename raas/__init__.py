"""RaaS: energy-credit ledger and billing for solar Roof-as-a-Service pools."""

__version__ = "0.1.0"

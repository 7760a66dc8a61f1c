"""MarFanet financial ledger and commission engine."""

__version__ = "1.0.0"

"""Credit accounting for paid model calls."""

from chronomem.credits.ledger import CreditContext, CreditLedger, settle_safely

__all__ = ["CreditLedger", "CreditContext", "settle_safely"]

"""Public schema exports."""

from .completion import ClassCompletionCreate, CompletionRead, NextClassNumberRead, NotificationRead
from .ledger import CreditAllocationCreate, LedgerAuditRead, LedgerEntryRead
from .payment import PaymentApplicationRead, PaymentCalculationRead, PaymentCreate, UnpaidClassRead

__all__ = [
    "ClassCompletionCreate",
    "CreditAllocationCreate",
    "CompletionRead",
    "LedgerAuditRead",
    "LedgerEntryRead",
    "NextClassNumberRead",
    "NotificationRead",
    "PaymentApplicationRead",
    "PaymentCalculationRead",
    "PaymentCreate",
    "UnpaidClassRead",
]

"""SQLAlchemy models for tutorledger."""

from .class_log import ClassLog
from .credit_ledger import CreditLedger, CreditTransactionType
from .profile import Profile, ProfileRole
from .scheduled_class import ScheduledClass
from .student import Student, Tutor
from .subscription import ACTIVE_STATUSES, StudentSubscription, SubscriptionStatus

__all__ = [
    "ACTIVE_STATUSES",
    "ClassLog",
    "CreditLedger",
    "CreditTransactionType",
    "Profile",
    "ProfileRole",
    "ScheduledClass",
    "Student",
    "StudentSubscription",
    "SubscriptionStatus",
    "Tutor",
]

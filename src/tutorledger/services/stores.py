"""Collaborator contracts consumed by the settlement saga and reconciler.

The saga and the reconciler only talk to these protocols. SQLAlchemy-backed
implementations live in :mod:`.sql_stores`; tests substitute in-memory fakes.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Protocol, Sequence
from uuid import UUID

from ..models import CreditTransactionType, ProfileRole


class StoreError(Exception):
    """Raised when a store read or write fails."""


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    profile_id: Optional[UUID] = None
    role: Optional[ProfileRole] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class ClassLogRecord:
    """Values written for a completed class."""

    class_number: str
    origin_schedule_id: UUID
    title: str
    tutor_name: str
    student_name: str
    date: date
    day: str
    time_range: str
    duration_hours: Decimal
    subject: str
    content: str
    homework: Optional[str] = None
    additional_info: Optional[str] = None
    class_cost: Optional[Decimal] = None
    tutor_cost: Optional[Decimal] = None


@dataclass(frozen=True)
class UnpaidClass:
    log_id: UUID
    date: date
    cost: Optional[Decimal]


@dataclass(frozen=True)
class StudentAccount:
    """Billing view of a student used by payment reconciliation."""

    student_id: UUID
    name: str
    email: str
    class_rate: Optional[Decimal]
    prepaid_balance: Decimal


@dataclass(frozen=True)
class SubscriptionSnapshot:
    subscription_id: UUID
    credits_remaining: int


@dataclass(frozen=True)
class LedgerEntryDraft:
    student_id: UUID
    transaction_type: CreditTransactionType
    amount: int
    balance_after: int
    reason: str
    subscription_id: Optional[UUID] = None
    related_class_id: Optional[UUID] = None
    reference_id: Optional[str] = None


class CreditErrorCode(str, enum.Enum):
    NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    OTHER = "OTHER"


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of the remote "deduct one class credit" call.

    ``idempotent`` is set when the class already held a debit from an earlier
    attempt and nothing new was deducted.
    """

    success: bool
    credits_remaining: Optional[int] = None
    admin_override: bool = False
    idempotent: bool = False
    error_code: Optional[CreditErrorCode] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    new_balance: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class NotificationAction:
    label: str
    url: str


@dataclass(frozen=True)
class Notification:
    """User-facing message produced at the service boundary."""

    level: str
    message: str
    description: Optional[str] = None
    action: Optional[NotificationAction] = None


class ScheduleStore(Protocol):
    def get_scheduled_class(self, class_id: UUID) -> Optional[object]:
        ...

    def delete_scheduled_class(self, class_id: UUID) -> None:
        ...


class ClassLogStore(Protocol):
    def find_by_origin_id(self, schedule_id: UUID) -> Optional[object]:
        ...

    def insert_class_log(self, record: ClassLogRecord) -> None:
        ...

    def delete_by_origin_id(self, schedule_id: UUID) -> None:
        ...

    def list_class_numbers(self, class_date: date) -> Sequence[str]:
        ...

    def list_unpaid_classes(self, student: StudentAccount) -> Sequence[UnpaidClass]:
        ...

    def batch_mark_paid(self, log_ids: Sequence[UUID], paid_on: date) -> None:
        ...


class RateStore(Protocol):
    def get_student_rate(self, student_name: str) -> Optional[Decimal]:
        ...

    def get_tutor_rate(self, tutor_name: str) -> Optional[Decimal]:
        ...


class StudentStore(Protocol):
    def get_student_account(self, name: str) -> Optional[StudentAccount]:
        ...

    def set_prepaid_balance(self, student_id: UUID, amount: Decimal) -> None:
        ...


class LedgerStore(Protocol):
    def latest_balance(self, student_id: UUID) -> int:
        ...

    def current_subscription(self, student_id: UUID) -> Optional[SubscriptionSnapshot]:
        ...

    def reference_used(self, student_id: UUID, reference_id: str) -> bool:
        ...

    def append_entry(self, entry: LedgerEntryDraft) -> int:
        ...


class CreditGateway(Protocol):
    def deduct_class_credit(
        self,
        student_id: UUID,
        class_id: UUID,
        class_label: str,
        auth_token: str,
        *,
        admin_override: bool = False,
    ) -> DeductionResult:
        ...

    def restore_class_credit(
        self,
        student_id: UUID,
        class_id: UUID,
        reason: str,
        auth_token: str,
    ) -> RestoreResult:
        ...


class SessionProvider(Protocol):
    def get_current_session(self) -> Optional[AuthSession]:
        ...


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class StaticSessionProvider:
    """Session provider bound to a session resolved earlier in the request."""

    def __init__(self, session: Optional[AuthSession]) -> None:
        self._session = session

    def get_current_session(self) -> Optional[AuthSession]:
        return self._session

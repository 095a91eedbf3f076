"""Class completion: turn a scheduled class into a class log exactly once.

The workflow is a small saga over independent stores::

    INITIATED -> CREDIT_DEDUCTED -> LOG_INSERTED -> SCHEDULE_DELETED -> COMMITTED

Failures before the deduction abort without side effects. After the
deduction, a failed log insert (or a log that appeared concurrently) restores
the credit once; a failed schedule delete removes the inserted log but leaves
the credit spent. If a compensation itself fails the saga ends in
``COMPENSATION_FAILED`` and the user is told to contact an admin.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Optional
from uuid import UUID

from ..utils.datetime import duration_hours, format_time_range, weekday_name
from ..utils.money import to_money
from .stores import (
    AuthSession,
    ClassLogRecord,
    ClassLogStore,
    CreditErrorCode,
    CreditGateway,
    DeductionResult,
    Notification,
    NotificationAction,
    Notifier,
    RateStore,
    ScheduleStore,
    SessionProvider,
    StoreError,
)

logger = logging.getLogger(__name__)


class CompletionState(str, enum.Enum):
    INITIATED = "INITIATED"
    CREDIT_DEDUCTED = "CREDIT_DEDUCTED"
    LOG_INSERTED = "LOG_INSERTED"
    SCHEDULE_DELETED = "SCHEDULE_DELETED"
    COMMITTED = "COMMITTED"
    ABORTED = "ABORTED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"


_TRANSITIONS = {
    CompletionState.INITIATED: {CompletionState.CREDIT_DEDUCTED, CompletionState.ABORTED},
    CompletionState.CREDIT_DEDUCTED: {
        CompletionState.LOG_INSERTED,
        CompletionState.ABORTED,
        CompletionState.COMPENSATION_FAILED,
    },
    CompletionState.LOG_INSERTED: {
        CompletionState.SCHEDULE_DELETED,
        CompletionState.ABORTED,
        CompletionState.COMPENSATION_FAILED,
    },
    CompletionState.SCHEDULE_DELETED: {CompletionState.COMMITTED},
}


class CompletionFailure(str, enum.Enum):
    """Why a completion attempt did not commit."""

    INVALID_REQUEST = "INVALID_REQUEST"
    ALREADY_COMPLETED_OR_MISSING = "ALREADY_COMPLETED_OR_MISSING"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    DEDUCTION_FAILED = "DEDUCTION_FAILED"
    LOG_INSERT_FAILED = "LOG_INSERT_FAILED"
    SCHEDULE_DELETE_FAILED = "SCHEDULE_DELETE_FAILED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class InvalidTransition(RuntimeError):
    """Raised when the saga attempts a transition that is not defined."""


@dataclass(frozen=True)
class ClassCompletionRequest:
    class_id: UUID
    class_number: str
    student_id: UUID
    tutor_name: str
    student_name: str
    date: date
    start_time: time
    end_time: time
    subject: str
    content: str
    title: Optional[str] = None
    homework: Optional[str] = None
    additional_info: Optional[str] = None
    admin_override: bool = False


@dataclass
class CompletionOutcome:
    success: bool
    state: CompletionState
    notification: Notification
    failure: Optional[CompletionFailure] = None
    credits_remaining: Optional[int] = None
    admin_override: bool = False
    credit_restored: Optional[bool] = None
    history: list[CompletionState] = field(default_factory=list)


@dataclass
class CompletionStores:
    """Collaborators the saga needs, injected by the caller."""

    schedule: ScheduleStore
    class_logs: ClassLogStore
    rates: RateStore
    credits: CreditGateway
    sessions: SessionProvider


def _pluralize_classes(count: int) -> str:
    return f"{count} class{'' if count == 1 else 'es'}"


class ClassCompletionSaga:
    """Runs one completion attempt. Create a new instance per attempt."""

    def __init__(
        self,
        stores: CompletionStores,
        *,
        purchase_url: str = "/pricing",
        low_credit_threshold: int = 3,
    ) -> None:
        self.stores = stores
        self.purchase_url = purchase_url
        self.low_credit_threshold = low_credit_threshold
        self.state = CompletionState.INITIATED
        self.history: list[CompletionState] = [CompletionState.INITIATED]

    def _advance(self, new_state: CompletionState) -> None:
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        logger.debug("completion saga %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def _outcome(
        self,
        notification: Notification,
        *,
        failure: Optional[CompletionFailure] = None,
        deduction: Optional[DeductionResult] = None,
        credit_restored: Optional[bool] = None,
    ) -> CompletionOutcome:
        if failure is not None and self.state not in (CompletionState.ABORTED, CompletionState.COMPENSATION_FAILED):
            self._advance(CompletionState.ABORTED)
        return CompletionOutcome(
            success=failure is None,
            state=self.state,
            notification=notification,
            failure=failure,
            credits_remaining=deduction.credits_remaining if deduction else None,
            admin_override=deduction.admin_override if deduction else False,
            credit_restored=credit_restored,
            history=list(self.history),
        )

    def _purchase_action(self, label: str) -> NotificationAction:
        return NotificationAction(label=label, url=self.purchase_url)

    def run(self, request: ClassCompletionRequest) -> CompletionOutcome:
        if self.state is not CompletionState.INITIATED:
            raise InvalidTransition("A completion saga can only run once.")

        if not request.content or not request.content.strip():
            return self._outcome(
                Notification("error", "Content covered is required to complete a class"),
                failure=CompletionFailure.INVALID_REQUEST,
            )
        try:
            hours = duration_hours(request.start_time, request.end_time)
        except ValueError as exc:
            return self._outcome(Notification("error", str(exc)), failure=CompletionFailure.INVALID_REQUEST)

        try:
            scheduled = self.stores.schedule.get_scheduled_class(request.class_id)
        except StoreError:
            logger.exception("could not verify scheduled class %s", request.class_id)
            return self._outcome(
                Notification("error", "Failed to verify class existence"),
                failure=CompletionFailure.STORE_UNAVAILABLE,
            )
        if scheduled is None:
            return self._outcome(
                Notification("error", "Class no longer exists or has already been completed"),
                failure=CompletionFailure.ALREADY_COMPLETED_OR_MISSING,
            )

        session = self.stores.sessions.get_current_session()
        if session is None or not session.access_token:
            return self._outcome(
                Notification("error", "You must be logged in to complete classes"),
                failure=CompletionFailure.NOT_AUTHENTICATED,
            )

        try:
            existing_log = self.stores.class_logs.find_by_origin_id(request.class_id)
        except StoreError:
            logger.exception("could not check class log status for %s", request.class_id)
            return self._outcome(
                Notification("error", "Failed to check class log status"),
                failure=CompletionFailure.STORE_UNAVAILABLE,
            )
        if existing_log is not None:
            return self._outcome(
                Notification("error", "This class has already been completed"),
                failure=CompletionFailure.ALREADY_COMPLETED,
            )

        deduction = self.stores.credits.deduct_class_credit(
            request.student_id,
            request.class_id,
            request.class_number,
            session.access_token,
            admin_override=request.admin_override,
        )
        if not deduction.success:
            return self._deduction_failed(request, deduction)
        self._advance(CompletionState.CREDIT_DEDUCTED)
        logger.info(
            "credit deducted for class %s (remaining %s, idempotent %s)",
            request.class_id,
            deduction.credits_remaining,
            deduction.idempotent,
        )

        try:
            raced_log = self.stores.class_logs.find_by_origin_id(request.class_id)
        except StoreError:
            logger.exception("could not re-check class log status for %s", request.class_id)
            return self._restore_credit(
                request,
                session,
                deduction,
                failure=CompletionFailure.STORE_UNAVAILABLE,
                message="Failed to check class log status",
                restored_message="Failed to check class log status - credit has been restored",
                stranded_message="Class log check failed and credit could not be restored automatically",
            )
        if raced_log is not None:
            return self._restore_credit(
                request,
                session,
                deduction,
                failure=CompletionFailure.ALREADY_COMPLETED,
                message="This class has already been completed",
                restored_message="This class has already been completed",
                stranded_message="This class has already been completed but the credit could not be restored automatically",
            )

        record = self._build_record(request, hours)

        try:
            self.stores.class_logs.insert_class_log(record)
        except StoreError:
            logger.exception("class log insert failed for class %s", request.class_id)
            return self._restore_credit(
                request,
                session,
                deduction,
                failure=CompletionFailure.LOG_INSERT_FAILED,
                message="Failed to create class log",
                restored_message="Failed to create class log - credit has been restored",
                stranded_message="Class log failed and credit could not be restored automatically",
            )
        self._advance(CompletionState.LOG_INSERTED)

        try:
            self.stores.schedule.delete_scheduled_class(request.class_id)
        except StoreError:
            logger.exception("scheduled class delete failed for class %s", request.class_id)
            return self._remove_inserted_log(request, deduction)
        self._advance(CompletionState.SCHEDULE_DELETED)

        self._advance(CompletionState.COMMITTED)
        logger.info("class %s completed as %s", request.class_id, request.class_number)
        return self._outcome(self._success_notification(deduction), deduction=deduction)

    def _build_record(self, request: ClassCompletionRequest, hours) -> ClassLogRecord:
        class_cost = tutor_cost = None
        try:
            student_rate = self.stores.rates.get_student_rate(request.student_name)
            tutor_rate = self.stores.rates.get_tutor_rate(request.tutor_name)
        except StoreError:
            logger.warning("rate lookup failed for class %s; costs left empty", request.class_id)
        else:
            if student_rate is not None:
                class_cost = to_money(student_rate)
            if tutor_rate is not None:
                tutor_cost = to_money(to_money(tutor_rate) * hours)

        return ClassLogRecord(
            class_number=request.class_number,
            origin_schedule_id=request.class_id,
            title=request.title or request.class_number,
            tutor_name=request.tutor_name,
            student_name=request.student_name,
            date=request.date,
            day=weekday_name(request.date),
            time_range=format_time_range(request.start_time, request.end_time),
            duration_hours=hours,
            subject=request.subject,
            content=request.content.strip(),
            homework=request.homework or None,
            additional_info=request.additional_info or None,
            class_cost=class_cost,
            tutor_cost=tutor_cost,
        )

    def _deduction_failed(self, request: ClassCompletionRequest, deduction: DeductionResult) -> CompletionOutcome:
        logger.info("credit deduction refused for class %s: %s", request.class_id, deduction.error_code)
        if deduction.error_code == CreditErrorCode.NO_SUBSCRIPTION:
            notification = Notification(
                "error",
                "Student has no active subscription",
                description="Please subscribe to continue taking classes",
                action=self._purchase_action("View Plans"),
            )
            failure = CompletionFailure.NO_SUBSCRIPTION
        elif deduction.error_code == CreditErrorCode.INSUFFICIENT_CREDITS:
            notification = Notification(
                "error",
                "Student has no remaining credits",
                description="Please purchase more credits to continue",
                action=self._purchase_action("Buy Credits"),
            )
            failure = CompletionFailure.INSUFFICIENT_CREDITS
        else:
            notification = Notification("error", "Failed to deduct class credit", description=deduction.error)
            failure = CompletionFailure.DEDUCTION_FAILED
        return self._outcome(notification, failure=failure, deduction=deduction)

    def _restore_credit(
        self,
        request: ClassCompletionRequest,
        session: AuthSession,
        deduction: DeductionResult,
        *,
        failure: CompletionFailure,
        message: str,
        restored_message: str,
        stranded_message: str,
    ) -> CompletionOutcome:
        if deduction.idempotent:
            # The debit belongs to another attempt; it is not ours to give back.
            return self._outcome(
                Notification("error", message),
                failure=failure,
                deduction=deduction,
                credit_restored=False,
            )

        result = self.stores.credits.restore_class_credit(
            request.student_id,
            request.class_id,
            f"Credit restored - class {request.class_number} could not be completed",
            session.access_token,
        )
        if result.success:
            logger.info("credit restored for class %s (balance %s)", request.class_id, result.new_balance)
            return self._outcome(
                Notification("error", restored_message, description="Please try again"),
                failure=failure,
                deduction=deduction,
                credit_restored=True,
            )

        logger.error(
            "credit for student %s, class %s could not be restored: %s",
            request.student_id,
            request.class_id,
            result.error,
        )
        self._advance(CompletionState.COMPENSATION_FAILED)
        return self._outcome(
            Notification(
                "error",
                stranded_message,
                description="Please contact admin to restore the credit manually",
            ),
            failure=failure,
            deduction=deduction,
            credit_restored=False,
        )

    def _remove_inserted_log(self, request: ClassCompletionRequest, deduction: DeductionResult) -> CompletionOutcome:
        try:
            self.stores.class_logs.delete_by_origin_id(request.class_id)
        except StoreError:
            logger.error("class log for %s could not be removed after schedule delete failure", request.class_id)
            self._advance(CompletionState.COMPENSATION_FAILED)
            return self._outcome(
                Notification(
                    "error",
                    "Failed to remove completed class from schedule",
                    description="The class log could not be cleaned up; please contact admin",
                ),
                failure=CompletionFailure.SCHEDULE_DELETE_FAILED,
                deduction=deduction,
            )
        return self._outcome(
            Notification("error", "Failed to remove completed class from schedule"),
            failure=CompletionFailure.SCHEDULE_DELETE_FAILED,
            deduction=deduction,
        )

    def _success_notification(self, deduction: DeductionResult) -> Notification:
        remaining = deduction.credits_remaining
        if deduction.admin_override:
            return Notification(
                "success",
                "Class completed (Admin Override)",
                description=f"Completed with {remaining if remaining is not None else 0} credits remaining",
            )
        if remaining is None:
            return Notification("success", "Class completed successfully")
        if remaining <= 0:
            return Notification(
                "success",
                "Class completed - No credits remaining",
                description="Student needs to purchase more credits",
                action=self._purchase_action("Buy Credits"),
            )
        message = f"Class completed - {_pluralize_classes(remaining)} remaining"
        if remaining < self.low_credit_threshold:
            return Notification("success", message, description="Student is running low on credits")
        return Notification("success", message)


def complete_class(
    stores: CompletionStores,
    request: ClassCompletionRequest,
    notifier: Notifier,
    *,
    purchase_url: str = "/pricing",
    low_credit_threshold: int = 3,
) -> bool:
    """Run one completion attempt and report it through ``notifier``.

    Never raises; every failure becomes an error notification.
    """

    saga = ClassCompletionSaga(stores, purchase_url=purchase_url, low_credit_threshold=low_credit_threshold)
    try:
        outcome = saga.run(request)
    except Exception:
        logger.exception("unexpected error completing class %s", request.class_id)
        notifier.notify(Notification("error", "Failed to complete class"))
        return False
    notifier.notify(outcome.notification)
    return outcome.success

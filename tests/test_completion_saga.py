from datetime import date, time
from decimal import Decimal
from uuid import uuid4

import pytest

from tutorledger.services.completion_service import (
    ClassCompletionRequest,
    ClassCompletionSaga,
    CompletionFailure,
    CompletionState,
    InvalidTransition,
    complete_class,
)
from tutorledger.services.stores import DeductionResult

from fakes import (
    FakeClassLogStore,
    FakeCreditGateway,
    FakeRateStore,
    FakeScheduleStore,
    FakeWorld,
    RecordingNotifier,
)

STUDENT_ID = uuid4()


def make_request(class_id, **overrides):
    values = dict(
        class_id=class_id,
        class_number="SM-JD-20241215-1",
        student_id=STUDENT_ID,
        tutor_name="John Doe",
        student_name="Sarah Miller",
        date=date(2024, 12, 15),
        start_time=time(14, 0),
        end_time=time(15, 30),
        subject="Math",
        content="Covered quadratic equations and factoring",
        homework="Complete worksheet problems 1-20",
    )
    values.update(overrides)
    return ClassCompletionRequest(**values)


@pytest.fixture
def class_id():
    return uuid4()


@pytest.fixture
def world(class_id):
    return FakeWorld(
        schedule=FakeScheduleStore([class_id]),
        class_logs=FakeClassLogStore(),
        rates=FakeRateStore({"Sarah Miller": Decimal("50.00")}, {"John Doe": Decimal("30.00")}),
        credits=FakeCreditGateway(balance=5),
    )


def run(world, request):
    return ClassCompletionSaga(world.stores()).run(request)


def test_happy_path_moves_class_into_log(world, class_id):
    outcome = run(world, make_request(class_id))

    assert outcome.success
    assert outcome.state is CompletionState.COMMITTED
    assert outcome.history == [
        CompletionState.INITIATED,
        CompletionState.CREDIT_DEDUCTED,
        CompletionState.LOG_INSERTED,
        CompletionState.SCHEDULE_DELETED,
        CompletionState.COMMITTED,
    ]
    assert world.credits.balance == 4
    assert class_id not in world.schedule.classes

    record = world.class_logs.logs[class_id]
    assert record.class_number == "SM-JD-20241215-1"
    assert record.day == "Sunday"
    assert record.time_range == "14:00-15:30"
    assert record.duration_hours == Decimal("1.50")
    assert record.class_cost == Decimal("50.00")
    assert record.tutor_cost == Decimal("45.00")
    assert record.title == "SM-JD-20241215-1"
    assert outcome.notification.message == "Class completed - 4 classes remaining"
    assert outcome.notification.description is None


def test_class_number_is_the_deduction_label(world, class_id):
    run(world, make_request(class_id))

    student_id, deducted_class, label, token, override = world.credits.deduct_calls[0]
    assert (student_id, deducted_class, label, token, override) == (
        STUDENT_ID,
        class_id,
        "SM-JD-20241215-1",
        "valid-token",
        False,
    )


@pytest.mark.parametrize(
    "balance, message, description",
    [
        (11, "Class completed - 10 classes remaining", None),
        (3, "Class completed - 2 classes remaining", "Student is running low on credits"),
        (2, "Class completed - 1 class remaining", "Student is running low on credits"),
        (1, "Class completed - No credits remaining", "Student needs to purchase more credits"),
    ],
)
def test_success_message_tiers(world, class_id, balance, message, description):
    world.credits.balance = balance

    outcome = run(world, make_request(class_id))

    assert outcome.notification.level == "success"
    assert outcome.notification.message == message
    assert outcome.notification.description == description


def test_no_credits_remaining_offers_purchase(world, class_id):
    world.credits.balance = 1

    outcome = run(world, make_request(class_id))

    assert outcome.credits_remaining == 0
    assert outcome.notification.action.label == "Buy Credits"
    assert outcome.notification.action.url == "/pricing"


def test_admin_override_completes_at_zero(world, class_id):
    world.credits.balance = 0

    outcome = run(world, make_request(class_id, admin_override=True))

    assert outcome.success
    assert outcome.admin_override
    assert outcome.notification.message == "Class completed (Admin Override)"
    assert outcome.notification.description == "Completed with -1 credits remaining"


def test_missing_class_aborts_without_deduction(world, class_id):
    world.schedule.classes.clear()

    outcome = run(world, make_request(class_id))

    assert not outcome.success
    assert outcome.state is CompletionState.ABORTED
    assert outcome.failure is CompletionFailure.ALREADY_COMPLETED_OR_MISSING
    assert outcome.notification.message == "Class no longer exists or has already been completed"
    assert world.credits.deduct_calls == []


def test_unauthenticated_caller_is_refused(world, class_id):
    world.session = None

    outcome = run(world, make_request(class_id))

    assert outcome.failure is CompletionFailure.NOT_AUTHENTICATED
    assert outcome.notification.message == "You must be logged in to complete classes"
    assert world.credits.deduct_calls == []


def test_existing_log_blocks_before_deduction(world, class_id):
    run(world, make_request(class_id))
    world.schedule.classes.add(class_id)

    outcome = run(world, make_request(class_id))

    assert outcome.failure is CompletionFailure.ALREADY_COMPLETED
    assert outcome.notification.message == "This class has already been completed"
    assert len(world.credits.deduct_calls) == 1
    assert world.credits.balance == 4


def test_insufficient_credits_changes_nothing(world, class_id):
    world.credits.balance = 0

    outcome = run(world, make_request(class_id))

    assert outcome.failure is CompletionFailure.INSUFFICIENT_CREDITS
    assert outcome.notification.message == "Student has no remaining credits"
    assert outcome.notification.description == "Please purchase more credits to continue"
    assert outcome.notification.action.label == "Buy Credits"
    assert world.credits.balance == 0
    assert class_id in world.schedule.classes
    assert world.class_logs.logs == {}


def test_no_subscription_points_to_plans(world, class_id):
    world.credits.has_subscription = False

    outcome = run(world, make_request(class_id))

    assert outcome.failure is CompletionFailure.NO_SUBSCRIPTION
    assert outcome.notification.message == "Student has no active subscription"
    assert outcome.notification.action.label == "View Plans"


def test_other_deduction_error_is_reported(world, class_id):
    world.credits.next_deduction = DeductionResult(success=False, error="Authentication failed")

    outcome = run(world, make_request(class_id))

    assert outcome.failure is CompletionFailure.DEDUCTION_FAILED
    assert outcome.notification.message == "Failed to deduct class credit"
    assert outcome.notification.description == "Authentication failed"


def test_log_insert_failure_restores_credit(world, class_id):
    world.class_logs.fail_insert = True

    outcome = run(world, make_request(class_id))

    assert outcome.state is CompletionState.ABORTED
    assert outcome.failure is CompletionFailure.LOG_INSERT_FAILED
    assert outcome.credit_restored is True
    assert outcome.notification.message == "Failed to create class log - credit has been restored"
    assert outcome.notification.description == "Please try again"
    assert world.credits.balance == 5
    assert len(world.credits.restore_calls) == 1
    assert class_id in world.schedule.classes


def test_failed_restore_escalates_to_admin(world, class_id):
    world.class_logs.fail_insert = True
    world.credits.restore_fails = True

    outcome = run(world, make_request(class_id))

    assert outcome.state is CompletionState.COMPENSATION_FAILED
    assert outcome.credit_restored is False
    assert outcome.notification.message == "Class log failed and credit could not be restored automatically"
    assert outcome.notification.description == "Please contact admin to restore the credit manually"


def test_schedule_delete_failure_removes_log_and_keeps_debit(world, class_id):
    world.schedule.fail_delete = True

    outcome = run(world, make_request(class_id))

    assert outcome.state is CompletionState.ABORTED
    assert outcome.failure is CompletionFailure.SCHEDULE_DELETE_FAILED
    assert outcome.notification.message == "Failed to remove completed class from schedule"
    assert world.class_logs.logs == {}
    assert world.class_logs.deleted == [class_id]
    assert world.credits.restore_calls == []
    assert world.credits.balance == 4


def test_schedule_delete_and_cleanup_failure(world, class_id):
    world.schedule.fail_delete = True
    world.class_logs.fail_delete = True

    outcome = run(world, make_request(class_id))

    assert outcome.state is CompletionState.COMPENSATION_FAILED
    assert class_id in world.class_logs.logs


def test_log_written_during_deduction_restores_credit(world, class_id):
    def concurrent_completion():
        world.class_logs.logs[class_id] = object()

    world.credits.on_deduct = concurrent_completion

    outcome = run(world, make_request(class_id))

    assert outcome.failure is CompletionFailure.ALREADY_COMPLETED
    assert outcome.credit_restored is True
    assert world.credits.balance == 5


def test_idempotent_deduction_is_never_restored(world, class_id):
    world.credits.next_deduction = DeductionResult(success=True, credits_remaining=4, idempotent=True)
    world.class_logs.fail_insert = True

    outcome = run(world, make_request(class_id))

    assert outcome.failure is CompletionFailure.LOG_INSERT_FAILED
    assert outcome.credit_restored is False
    assert world.credits.restore_calls == []
    assert world.credits.balance == 5


def test_second_completion_after_commit_is_refused(world, class_id):
    first = run(world, make_request(class_id))
    second = run(world, make_request(class_id))

    assert first.success
    assert second.failure is CompletionFailure.ALREADY_COMPLETED_OR_MISSING
    assert world.credits.balance == 4
    assert len(world.class_logs.logs) == 1


def test_blank_content_is_rejected(world, class_id):
    outcome = run(world, make_request(class_id, content="   "))

    assert outcome.failure is CompletionFailure.INVALID_REQUEST
    assert outcome.notification.message == "Content covered is required to complete a class"
    assert world.credits.deduct_calls == []


def test_end_before_start_is_rejected(world, class_id):
    outcome = run(world, make_request(class_id, start_time=time(15, 0), end_time=time(14, 0)))

    assert outcome.failure is CompletionFailure.INVALID_REQUEST
    assert world.credits.deduct_calls == []


def test_missing_rates_leave_costs_empty(world, class_id):
    world.rates.student_rates.clear()
    world.rates.tutor_rates.clear()

    outcome = run(world, make_request(class_id))

    assert outcome.success
    record = world.class_logs.logs[class_id]
    assert record.class_cost is None
    assert record.tutor_cost is None


def test_saga_runs_only_once(world, class_id):
    saga = ClassCompletionSaga(world.stores())
    saga.run(make_request(class_id))

    with pytest.raises(InvalidTransition):
        saga.run(make_request(class_id))


def test_complete_class_notifies_and_returns_success(world, class_id):
    notifier = RecordingNotifier()

    assert complete_class(world.stores(), make_request(class_id), notifier) is True
    assert complete_class(world.stores(), make_request(class_id), notifier) is False
    assert [n.level for n in notifier.notifications] == ["success", "error"]


def test_complete_class_turns_unexpected_errors_into_notification(world, class_id):
    def explode():
        raise RuntimeError("connection reset")

    world.credits.on_deduct = explode
    notifier = RecordingNotifier()

    assert complete_class(world.stores(), make_request(class_id), notifier) is False
    assert notifier.notifications[-1].message == "Failed to complete class"

import random
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from tutorledger.models import CreditTransactionType
from tutorledger.services.reconciliation_service import (
    PaymentInput,
    PaymentReconciler,
    PaymentRuleViolation,
    calculate_payment,
)
from tutorledger.services.stores import SubscriptionSnapshot

from fakes import FakeClassLogStore, FakeLedgerStore, FakeStudentStore, account, unpaid

RATE = Decimal("50.00")


def unpaid_series(costs, start=date(2024, 11, 1)):
    return [unpaid(uuid4(), start + timedelta(days=offset), cost) for offset, cost in enumerate(costs)]


def test_partial_coverage_marks_oldest_whole_classes():
    classes = unpaid_series(["50", "50", "50"])

    result = calculate_payment(Decimal("120"), Decimal("0"), RATE, classes, 0)

    assert result.classes_to_mark == tuple(classes[:2])
    assert result.unpaid_cost_covered == Decimal("100.00")
    assert result.remaining_after_unpaid == Decimal("20.00")
    assert result.credits_to_add == 0
    assert result.new_surplus == Decimal("20.00")
    assert result.unpaid_remaining == 1


def test_surplus_tops_up_to_whole_credits():
    result = calculate_payment(Decimal("175"), Decimal("25"), RATE, [], 3)

    assert result.total_available == Decimal("200.00")
    assert result.classes_to_mark == ()
    assert result.credits_to_add == 4
    assert result.new_surplus == Decimal("0.00")
    assert result.new_credits_total == 7


def test_missing_cost_is_charged_at_class_rate():
    classes = unpaid_series([None, "40"])

    result = calculate_payment(Decimal("90"), Decimal("0"), RATE, classes, 0)

    assert len(result.classes_to_mark) == 2
    assert result.unpaid_cost_covered == Decimal("90.00")


def test_stops_at_first_class_that_does_not_fit():
    classes = unpaid_series(["80", "10"])

    result = calculate_payment(Decimal("50"), Decimal("0"), RATE, classes, 0)

    assert result.classes_to_mark == ()
    assert result.credits_to_add == 1
    assert result.new_surplus == Decimal("0.00")


@pytest.mark.parametrize("amount", ["0", "0.01", "49.99", "50", "120", "333.33", "1000"])
@pytest.mark.parametrize("surplus", ["0", "12.50", "49.99"])
@pytest.mark.parametrize("costs", [[], ["50", "50", "50"], ["35.50", "60", None]])
def test_conservation_and_surplus_bound(amount, surplus, costs):
    result = calculate_payment(Decimal(amount), Decimal(surplus), RATE, unpaid_series(costs), 0)

    assert result.unpaid_cost_covered + result.remaining_after_unpaid == result.total_available
    assert result.credits_to_add * RATE + result.new_surplus == result.remaining_after_unpaid
    assert Decimal("0") <= result.new_surplus < RATE


def test_input_order_does_not_change_selection():
    classes = unpaid_series(["50", "45", "30", "20", "60"])
    expected = calculate_payment(Decimal("130"), Decimal("0"), RATE, classes, 0).classes_to_mark

    shuffled = list(classes)
    for seed in range(5):
        random.Random(seed).shuffle(shuffled)
        assert calculate_payment(Decimal("130"), Decimal("0"), RATE, shuffled, 0).classes_to_mark == expected


@pytest.fixture
def student_id():
    return uuid4()


@pytest.fixture
def reconciler(student_id):
    students = FakeStudentStore([account(student_id, prepaid="10.00")])
    class_logs = FakeClassLogStore()
    class_logs.unpaid = unpaid_series(["50", "50", "50"])
    subscription = SubscriptionSnapshot(subscription_id=uuid4(), credits_remaining=2)
    ledger = FakeLedgerStore(balance=2, subscription=subscription)
    return PaymentReconciler(students=students, class_logs=class_logs, ledger=ledger)


def payment(amount, **overrides):
    values = dict(student_name="Sarah Miller", amount_received=Decimal(amount), payment_date=date(2024, 12, 20))
    values.update(overrides)
    return PaymentInput(**values)


def test_record_payment_uses_stored_surplus(reconciler):
    plan = reconciler.record_payment(payment("200"))

    assert plan.calculation.total_available == Decimal("210.00")
    assert len(plan.calculation.classes_to_mark) == 3
    assert plan.calculation.credits_to_add == 1
    assert plan.calculation.new_surplus == Decimal("10.00")
    assert plan.reason == "Direct payment (Zelle) - $200.00"


def test_record_payment_keeps_explicit_reason(reconciler):
    plan = reconciler.record_payment(payment("50", reason="  December lessons  "))

    assert plan.reason == "December lessons"


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_record_payment_rejects_non_positive_amount(reconciler, amount):
    with pytest.raises(PaymentRuleViolation):
        reconciler.record_payment(payment(amount))


def test_record_payment_rejects_blank_reason(reconciler):
    with pytest.raises(PaymentRuleViolation):
        reconciler.record_payment(payment("50", reason="   "))


def test_record_payment_unknown_student(reconciler):
    with pytest.raises(PaymentRuleViolation) as excinfo:
        reconciler.record_payment(payment("50", student_name="Nobody"))

    assert excinfo.value.status_code == 404


def test_record_payment_requires_class_rate(student_id):
    reconciler = PaymentReconciler(
        students=FakeStudentStore([account(student_id, class_rate=None)]),
        class_logs=FakeClassLogStore(),
        ledger=FakeLedgerStore(),
    )

    with pytest.raises(PaymentRuleViolation):
        reconciler.record_payment(payment("50"))


def test_apply_payment_runs_writes_in_order(reconciler, student_id):
    plan = reconciler.record_payment(payment("200", reference_id="zelle-123"))

    result = reconciler.apply_payment(plan)

    assert result.success
    assert result.completed_steps == ["mark_paid", "ledger_credit", "prepaid_balance"]
    assert result.classes_marked == 3
    assert result.credits_added == 1
    assert result.surplus_stored == Decimal("10.00")
    assert result.summary == "Marked 3 classes paid, added 1 credits, $10.00 surplus stored"

    assert set(reconciler.class_logs.paid) == {cls.log_id for cls in plan.calculation.classes_to_mark}
    entry = reconciler.ledger.entries[0]
    assert entry.transaction_type is CreditTransactionType.CREDIT
    assert entry.amount == 1
    assert entry.balance_after == 3
    assert entry.reference_id == "zelle-123"
    assert entry.subscription_id == plan.subscription_id
    assert reconciler.students.writes == [(student_id, Decimal("10.00"))]


def test_apply_payment_without_credits_skips_ledger(reconciler):
    plan = reconciler.record_payment(payment("20"))

    result = reconciler.apply_payment(plan)

    assert result.completed_steps == ["prepaid_balance"]
    assert reconciler.ledger.entries == []
    assert result.surplus_stored == Decimal("30.00")


def test_apply_payment_stops_at_first_failure(reconciler):
    reconciler.ledger.fail_append = True
    plan = reconciler.record_payment(payment("200"))

    result = reconciler.apply_payment(plan)

    assert not result.success
    assert result.failed_step == "ledger_credit"
    assert result.completed_steps == ["mark_paid"]
    assert len(reconciler.class_logs.paid) == 3
    assert reconciler.students.writes == []


@pytest.fixture
def five_unpaid(student_id):
    class_logs = FakeClassLogStore()
    class_logs.unpaid = unpaid_series(["50"] * 5)
    subscription = SubscriptionSnapshot(subscription_id=uuid4(), credits_remaining=0)
    return PaymentReconciler(
        students=FakeStudentStore([account(student_id)]),
        class_logs=class_logs,
        ledger=FakeLedgerStore(subscription=subscription),
    )


def test_reentered_reference_is_rejected_before_any_write(five_unpaid):
    receipt = payment("100", reference_id="zelle-1")
    first = five_unpaid.apply_payment(five_unpaid.record_payment(receipt))
    assert first.classes_marked == 2

    with pytest.raises(PaymentRuleViolation) as excinfo:
        five_unpaid.record_payment(receipt)

    assert excinfo.value.status_code == 409
    assert len(five_unpaid.class_logs.paid) == 2
    assert len(five_unpaid.ledger.entries) == 1


def test_plan_applied_twice_writes_once(five_unpaid):
    plan = five_unpaid.record_payment(payment("100", reference_id="zelle-1"))
    five_unpaid.apply_payment(plan)

    with pytest.raises(PaymentRuleViolation) as excinfo:
        five_unpaid.apply_payment(plan)

    assert excinfo.value.status_code == 409
    assert len(five_unpaid.class_logs.paid) == 2
    assert five_unpaid.students.writes == [(plan.student.student_id, Decimal("0.00"))]


def test_reference_without_credits_leaves_zero_adjustment(five_unpaid):
    plan = five_unpaid.record_payment(payment("100", reference_id="zelle-1"))

    result = five_unpaid.apply_payment(plan)

    assert result.completed_steps == ["mark_paid", "ledger_credit", "prepaid_balance"]
    assert result.credits_added == 0
    [entry] = five_unpaid.ledger.entries
    assert entry.transaction_type is CreditTransactionType.ADJUSTMENT
    assert entry.amount == 0
    assert entry.balance_after == 0
    assert entry.reference_id == "zelle-1"


def test_record_payment_rejects_blank_reference(reconciler):
    with pytest.raises(PaymentRuleViolation):
        reconciler.record_payment(payment("50", reference_id="  "))

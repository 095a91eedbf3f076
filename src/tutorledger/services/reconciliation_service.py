"""Manual (cash/Zelle) payment reconciliation.

A payment plus any carried-over surplus first settles unpaid classes, oldest
first and only in whole classes; what is left buys whole credits at the
student's class rate, and the remainder is carried as the new surplus.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from ..models import CreditTransactionType
from ..utils.money import to_money
from .stores import (
    ClassLogStore,
    LedgerEntryDraft,
    LedgerStore,
    StoreError,
    StudentAccount,
    StudentStore,
    UnpaidClass,
)

logger = logging.getLogger(__name__)


class PaymentRuleViolation(Exception):
    """Raised when a payment cannot be recorded as entered."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


@dataclass(frozen=True)
class PaymentCalculation:
    total_available: Decimal
    classes_to_mark: tuple[UnpaidClass, ...]
    unpaid_cost_covered: Decimal
    remaining_after_unpaid: Decimal
    credits_to_add: int
    new_surplus: Decimal
    new_credits_total: int
    unpaid_remaining: int


def calculate_payment(
    amount_received: Decimal,
    existing_surplus: Decimal,
    class_rate: Decimal,
    unpaid_classes: Sequence[UnpaidClass],
    credits_remaining: int,
) -> PaymentCalculation:
    """Split a payment between unpaid classes, new credits and surplus.

    Pure: performs no I/O. Classes without a recorded cost are charged at
    ``class_rate``. Assumes ``amount_received >= 0`` and ``class_rate > 0``.
    """

    rate = to_money(class_rate)
    total_available = to_money(amount_received) + to_money(existing_surplus)

    ordered = sorted(unpaid_classes, key=lambda cls: (cls.date, str(cls.log_id)))

    covered = Decimal("0.00")
    to_mark: list[UnpaidClass] = []
    for unpaid in ordered:
        cost = to_money(unpaid.cost) if unpaid.cost is not None else rate
        if covered + cost > total_available:
            break
        covered += cost
        to_mark.append(unpaid)

    remaining = total_available - covered
    credits_to_add = int(remaining // rate)
    new_surplus = to_money(remaining - credits_to_add * rate)

    return PaymentCalculation(
        total_available=total_available,
        classes_to_mark=tuple(to_mark),
        unpaid_cost_covered=covered,
        remaining_after_unpaid=remaining,
        credits_to_add=credits_to_add,
        new_surplus=new_surplus,
        new_credits_total=credits_remaining + credits_to_add,
        unpaid_remaining=len(unpaid_classes) - len(to_mark),
    )


@dataclass(frozen=True)
class PaymentInput:
    student_name: str
    amount_received: Decimal
    payment_date: date
    payment_method: str = "zelle"
    reason: Optional[str] = None
    reference_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentPlan:
    """A calculation together with what is needed to apply it."""

    payment: PaymentInput
    student: StudentAccount
    subscription_id: Optional[UUID]
    reason: str
    calculation: PaymentCalculation


APPLY_STEPS = ("mark_paid", "ledger_credit", "prepaid_balance")


@dataclass
class PaymentApplication:
    classes_marked: int = 0
    credits_added: int = 0
    ledger_entry_id: Optional[int] = None
    surplus_stored: Optional[Decimal] = None
    completed_steps: list[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failed_step is None

    @property
    def summary(self) -> str:
        parts = []
        if self.classes_marked:
            parts.append(f"Marked {self.classes_marked} classes paid")
        if self.credits_added:
            parts.append(f"added {self.credits_added} credits")
        if self.surplus_stored:
            parts.append(f"${self.surplus_stored:.2f} surplus stored")
        if not parts:
            return "Payment recorded"
        text = ", ".join(parts)
        return text[0].upper() + text[1:]


class PaymentReconciler:
    """Caller side of reconciliation: validation, loading and the three writes."""

    def __init__(self, students: StudentStore, class_logs: ClassLogStore, ledger: LedgerStore) -> None:
        self.students = students
        self.class_logs = class_logs
        self.ledger = ledger

    def record_payment(self, payment: PaymentInput) -> PaymentPlan:
        if payment.amount_received is None or payment.amount_received <= 0:
            raise PaymentRuleViolation("Payment amount must be greater than zero.")
        if payment.reason is not None and not payment.reason.strip():
            raise PaymentRuleViolation("Payment reason cannot be blank.")
        if payment.reference_id is not None and not payment.reference_id.strip():
            raise PaymentRuleViolation("Payment reference cannot be blank.")

        try:
            student = self.students.get_student_account(payment.student_name)
            if student is None:
                raise PaymentRuleViolation(f"Student {payment.student_name} not found", status_code=404)
            if student.class_rate is None or student.class_rate <= 0:
                raise PaymentRuleViolation(f"Student {student.name} has no class rate set.")
            self._check_reference(student, payment.reference_id)

            unpaid = self.class_logs.list_unpaid_classes(student)
            subscription = self.ledger.current_subscription(student.student_id)
        except StoreError as exc:
            raise PaymentRuleViolation("Could not load the student's billing summary.", status_code=503) from exc

        calculation = calculate_payment(
            payment.amount_received,
            student.prepaid_balance,
            student.class_rate,
            unpaid,
            subscription.credits_remaining if subscription else 0,
        )
        reason = (
            payment.reason.strip()
            if payment.reason
            else f"Direct payment ({payment.payment_method.title()}) - ${to_money(payment.amount_received):.2f}"
        )
        return PaymentPlan(
            payment=payment,
            student=student,
            subscription_id=subscription.subscription_id if subscription else None,
            reason=reason,
            calculation=calculation,
        )

    def _check_reference(self, student: StudentAccount, reference_id: Optional[str]) -> None:
        if reference_id and self.ledger.reference_used(student.student_id, reference_id):
            raise PaymentRuleViolation(f"Payment {reference_id} has already been recorded", status_code=409)

    def apply_payment(self, plan: PaymentPlan) -> PaymentApplication:
        """Perform the writes in order, stopping at the first failure.

        Earlier writes are not undone when a later one fails. A payment with a
        ``reference_id`` always leaves a ledger row carrying it (a zero
        adjustment when it buys no credits), so it cannot be applied twice.

        Raises :class:`PaymentRuleViolation` before any write when the
        reference was recorded after the plan was made.
        """

        calculation = plan.calculation
        reference_id = plan.payment.reference_id
        result = PaymentApplication()
        step = APPLY_STEPS[0]
        try:
            self._check_reference(plan.student, reference_id)
            if calculation.classes_to_mark:
                self.class_logs.batch_mark_paid(
                    [cls.log_id for cls in calculation.classes_to_mark],
                    plan.payment.payment_date,
                )
                result.classes_marked = len(calculation.classes_to_mark)
                result.completed_steps.append(step)

            step = APPLY_STEPS[1]
            if calculation.credits_to_add > 0 or reference_id:
                current = self.ledger.latest_balance(plan.student.student_id)
                result.ledger_entry_id = self.ledger.append_entry(
                    LedgerEntryDraft(
                        student_id=plan.student.student_id,
                        subscription_id=plan.subscription_id,
                        transaction_type=(
                            CreditTransactionType.CREDIT
                            if calculation.credits_to_add > 0
                            else CreditTransactionType.ADJUSTMENT
                        ),
                        amount=calculation.credits_to_add,
                        balance_after=current + calculation.credits_to_add,
                        reason=plan.reason,
                        reference_id=reference_id,
                    )
                )
                result.credits_added = calculation.credits_to_add
                result.completed_steps.append(step)

            step = APPLY_STEPS[2]
            self.students.set_prepaid_balance(plan.student.student_id, calculation.new_surplus)
            result.surplus_stored = calculation.new_surplus
            result.completed_steps.append(step)
        except StoreError as exc:
            result.failed_step = step
            result.error = str(exc)
            logger.warning(
                "payment for %s stopped at %s after %s: %s",
                plan.student.name,
                step,
                result.completed_steps,
                exc,
            )
            return result

        logger.info("payment recorded for %s: %s", plan.student.name, result.summary)
        return result

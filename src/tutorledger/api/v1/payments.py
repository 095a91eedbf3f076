"""Endpoints for manual payment recording."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.security import require_admin
from ...schemas import PaymentApplicationRead, PaymentCalculationRead, PaymentCreate
from ...services.reconciliation_service import PaymentInput, PaymentPlan, PaymentRuleViolation
from ...services.sql_stores import sql_payment_reconciler

router = APIRouter(prefix="/payments", tags=["payments"], dependencies=[Depends(require_admin)])


def _payment_input(payload: PaymentCreate) -> PaymentInput:
    return PaymentInput(
        student_name=payload.student_name,
        amount_received=payload.amount_received,
        payment_date=payload.payment_date,
        payment_method=payload.payment_method,
        reason=payload.reason,
        reference_id=payload.reference_id,
    )


def _calculation_read(plan: PaymentPlan) -> PaymentCalculationRead:
    calculation = plan.calculation
    return PaymentCalculationRead(
        student_id=plan.student.student_id,
        student_name=plan.student.name,
        class_rate=plan.student.class_rate,
        existing_surplus=plan.student.prepaid_balance,
        amount_received=plan.payment.amount_received,
        total_available=calculation.total_available,
        classes_to_mark=[
            {"log_id": cls.log_id, "date": cls.date, "cost": cls.cost} for cls in calculation.classes_to_mark
        ],
        unpaid_cost_covered=calculation.unpaid_cost_covered,
        remaining_after_unpaid=calculation.remaining_after_unpaid,
        credits_to_add=calculation.credits_to_add,
        new_surplus=calculation.new_surplus,
        new_credits_total=calculation.new_credits_total,
        unpaid_remaining=calculation.unpaid_remaining,
    )


@router.post(
    "/calculate",
    response_model=PaymentCalculationRead,
    summary="Preview how a payment would be applied",
    responses={
        200: {
            "description": "Classes to mark paid, credits to add and the new surplus",
            "content": {
                "application/json": {
                    "example": {
                        "student_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
                        "student_name": "Sarah Miller",
                        "class_rate": "50.00",
                        "existing_surplus": "0.00",
                        "amount_received": "120.00",
                        "total_available": "120.00",
                        "classes_to_mark": [],
                        "unpaid_cost_covered": "100.00",
                        "remaining_after_unpaid": "20.00",
                        "credits_to_add": 0,
                        "new_surplus": "20.00",
                        "new_credits_total": 4,
                        "unpaid_remaining": 1,
                    }
                }
            },
        },
        400: {"description": "Business rule violation"},
        404: {"description": "Student not found"},
    },
)
def calculate_payment(payload: PaymentCreate, db: Session = Depends(get_db)) -> PaymentCalculationRead:
    """Compute the reconciliation without writing anything."""

    try:
        plan = sql_payment_reconciler(db).record_payment(_payment_input(payload))
    except PaymentRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return _calculation_read(plan)


@router.post(
    "/apply",
    response_model=PaymentApplicationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Record a payment",
    responses={
        201: {"description": "Classes marked paid, credits added and surplus stored"},
        400: {"description": "Business rule violation"},
        404: {"description": "Student not found"},
        409: {"description": "Payment reference already recorded"},
        500: {"description": "A write failed; earlier writes were kept"},
    },
)
def apply_payment(payload: PaymentCreate, db: Session = Depends(get_db)) -> PaymentApplicationRead:
    """Recompute the reconciliation and perform its writes in order.

    Example request body::

        {
            "student_name": "Sarah Miller",
            "amount_received": "175.00",
            "payment_date": "2024-12-20",
            "reference_id": "zelle-8841"
        }
    """

    reconciler = sql_payment_reconciler(db)
    try:
        plan = reconciler.record_payment(_payment_input(payload))
        application = reconciler.apply_payment(plan)
    except PaymentRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    body = PaymentApplicationRead(
        success=application.success,
        summary=application.summary,
        classes_marked=application.classes_marked,
        credits_added=application.credits_added,
        ledger_entry_id=application.ledger_entry_id,
        surplus_stored=application.surplus_stored,
        completed_steps=application.completed_steps,
        failed_step=application.failed_step,
        calculation=_calculation_read(plan),
    )
    if not application.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=body.model_dump(mode="json"),
        )
    return body

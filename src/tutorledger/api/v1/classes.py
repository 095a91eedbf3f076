"""Class completion endpoints."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...core.config import Settings, get_settings
from ...core.database import get_db
from ...core.security import get_auth_session
from ...schemas import ClassCompletionCreate, CompletionRead, NextClassNumberRead
from ...services.completion_service import (
    ClassCompletionRequest,
    ClassCompletionSaga,
    CompletionFailure,
    CompletionOutcome,
)
from ...services.sql_stores import SqlClassLogStore, sql_completion_stores
from ...services.stores import AuthSession, Notification, StoreError
from ...utils.class_numbers import next_class_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/classes", tags=["classes"])

_FAILURE_STATUS = {
    CompletionFailure.INVALID_REQUEST: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CompletionFailure.ALREADY_COMPLETED_OR_MISSING: status.HTTP_404_NOT_FOUND,
    CompletionFailure.NOT_AUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    CompletionFailure.ALREADY_COMPLETED: status.HTTP_409_CONFLICT,
    CompletionFailure.NO_SUBSCRIPTION: status.HTTP_402_PAYMENT_REQUIRED,
    CompletionFailure.INSUFFICIENT_CREDITS: status.HTTP_402_PAYMENT_REQUIRED,
    CompletionFailure.DEDUCTION_FAILED: status.HTTP_502_BAD_GATEWAY,
    CompletionFailure.LOG_INSERT_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    CompletionFailure.SCHEDULE_DELETE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    CompletionFailure.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _completion_read(outcome: CompletionOutcome, class_number: str) -> CompletionRead:
    notification = outcome.notification
    return CompletionRead(
        success=outcome.success,
        state=outcome.state.value,
        failure=outcome.failure.value if outcome.failure else None,
        class_number=class_number,
        credits_remaining=outcome.credits_remaining,
        admin_override=outcome.admin_override,
        credit_restored=outcome.credit_restored,
        notification={
            "level": notification.level,
            "message": notification.message,
            "description": notification.description,
            "action": (
                {"label": notification.action.label, "url": notification.action.url}
                if notification.action
                else None
            ),
        },
    )


def _next_number(db: Session, student_name: str, tutor_name: str, class_date: date) -> str:
    try:
        existing = SqlClassLogStore(db).list_class_numbers(class_date)
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return next_class_number(student_name, tutor_name, class_date, existing)


@router.get(
    "/next-number",
    response_model=NextClassNumberRead,
    summary="Next free class number",
    responses={
        200: {
            "description": "Class number not yet used for the student, tutor and date",
            "content": {"application/json": {"example": {"class_number": "SM-JD-20241215-2"}}},
        }
    },
)
def get_next_class_number(
    *,
    student_name: str = Query(..., min_length=1),
    tutor_name: str = Query(..., min_length=1),
    class_date: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
) -> NextClassNumberRead:
    """Scan the class numbers used on ``date`` and return the next suffix."""

    return NextClassNumberRead(class_number=_next_number(db, student_name, tutor_name, class_date))


@router.post(
    "/{class_id}/complete",
    response_model=CompletionRead,
    summary="Complete a scheduled class",
    responses={
        200: {
            "description": "Class completed and one credit deducted",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "state": "COMMITTED",
                        "failure": None,
                        "class_number": "SM-JD-20241215-1",
                        "credits_remaining": 2,
                        "admin_override": False,
                        "credit_restored": None,
                        "notification": {
                            "level": "success",
                            "message": "Class completed - 2 classes remaining",
                            "description": "Student is running low on credits",
                            "action": None,
                        },
                    }
                }
            },
        },
        401: {"description": "Not signed in"},
        402: {"description": "No subscription or no remaining credits"},
        404: {"description": "Class missing or already completed"},
        409: {"description": "Class already completed"},
        500: {"description": "Completion failed after a side effect; see notification"},
    },
)
def complete_scheduled_class(
    class_id: UUID,
    payload: ClassCompletionCreate,
    db: Session = Depends(get_db),
    auth_session: Optional[AuthSession] = Depends(get_auth_session),
    settings: Settings = Depends(get_settings),
) -> CompletionRead:
    """Settle a scheduled class into a class log.

    Example request body::

        {
            "student_id": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
            "tutor_name": "John Doe",
            "student_name": "Sarah Miller",
            "date": "2024-12-15",
            "start_time": "14:00",
            "end_time": "15:00",
            "subject": "Math",
            "content": "Covered quadratic equations and factoring",
            "homework": "Worksheet problems 1-20"
        }
    """

    class_number = payload.class_number or _next_number(db, payload.student_name, payload.tutor_name, payload.date)
    request = ClassCompletionRequest(
        class_id=class_id,
        class_number=class_number,
        student_id=payload.student_id,
        tutor_name=payload.tutor_name,
        student_name=payload.student_name,
        date=payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        subject=payload.subject,
        content=payload.content,
        title=payload.title,
        homework=payload.homework,
        additional_info=payload.additional_info,
        admin_override=payload.admin_override,
    )

    saga = ClassCompletionSaga(
        sql_completion_stores(db, auth_session),
        purchase_url=settings.purchase_url,
        low_credit_threshold=settings.low_credit_threshold,
    )
    try:
        outcome = saga.run(request)
    except Exception:
        logger.exception("unexpected error completing class %s", class_id)
        outcome = CompletionOutcome(
            success=False,
            state=saga.state,
            notification=Notification("error", "Failed to complete class"),
        )
    body = _completion_read(outcome, class_number)
    if not outcome.success:
        raise HTTPException(
            status_code=_FAILURE_STATUS.get(outcome.failure, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=body.model_dump(mode="json"),
        )
    return body

"""Credit ledger and subscription audit endpoints."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.security import get_auth_session, require_admin
from ...models import ProfileRole, Student
from ...schemas import CreditAllocationCreate, LedgerAuditRead, LedgerEntryRead
from ...services import ledger_service
from ...services.ledger_service import LedgerCreditService, LedgerRuleViolation
from ...services.stores import AuthSession

router = APIRouter(tags=["ledger"])

_STAFF_ROLES = (ProfileRole.TUTOR, ProfileRole.ADMIN)


def _can_read_history(db: Session, auth_session: AuthSession, student_id: UUID) -> bool:
    if auth_session.role in _STAFF_ROLES:
        return True
    if auth_session.role != ProfileRole.STUDENT or not auth_session.email:
        return False
    student = db.get(Student, student_id)
    return student is not None and student.email == auth_session.email


@router.get(
    "/ledger/{student_id}",
    response_model=List[LedgerEntryRead],
    summary="Credit history for a student",
    responses={
        401: {"description": "Not signed in"},
        403: {"description": "Students may only read their own history"},
    },
)
def list_ledger_entries(
    student_id: UUID,
    *,
    limit: int = Query(50, ge=1, le=200, description="Maximum items to return"),
    offset: int = Query(0, ge=0, description="Items to skip for pagination"),
    db: Session = Depends(get_db),
    auth_session: Optional[AuthSession] = Depends(get_auth_session),
) -> List[LedgerEntryRead]:
    """Return ledger entries newest first.

    Tutors and admins may read any student; a student only their own.
    """

    if auth_session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if not _can_read_history(db, auth_session, student_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view this ledger")
    entries = ledger_service.list_ledger_entries(db, student_id=student_id, limit=limit, offset=offset)
    return list(entries)


@router.post(
    "/subscriptions/{subscription_id}/credits",
    response_model=LedgerEntryRead,
    status_code=status.HTTP_201_CREATED,
    summary="Grant or correct credits by hand",
    dependencies=[Depends(require_admin)],
    responses={
        400: {"description": "Zero amount or missing reason"},
        404: {"description": "Subscription not found"},
        409: {"description": "Reference already used"},
    },
)
def allocate_credits(
    subscription_id: UUID,
    payload: CreditAllocationCreate,
    db: Session = Depends(get_db),
) -> LedgerEntryRead:
    """Append a manual ledger entry for the subscription.

    Example request body::

        {
            "amount": 4,
            "reason": "Makeup classes for December",
            "reference_id": "promo-2024-12"
        }
    """

    try:
        entry = LedgerCreditService(db).allocate_credits(
            subscription_id,
            amount=payload.amount,
            reason=payload.reason,
            reference_id=payload.reference_id,
        )
    except LedgerRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return LedgerEntryRead.model_validate(entry)


@router.get(
    "/subscriptions/{subscription_id}/audit",
    response_model=LedgerAuditRead,
    summary="Check cached credits against the ledger",
    dependencies=[Depends(require_admin)],
)
def audit_subscription(subscription_id: UUID, db: Session = Depends(get_db)) -> LedgerAuditRead:
    try:
        audit = ledger_service.audit_subscription(db, subscription_id)
    except LedgerRuleViolation as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return LedgerAuditRead.model_validate(audit)


@router.post(
    "/subscriptions/{subscription_id}/resync",
    response_model=LedgerAuditRead,
    summary="Rewrite cached credits from the ledger",
    dependencies=[Depends(require_admin)],
)
def resync_subscription(subscription_id: UUID, db: Session = Depends(get_db)) -> LedgerAuditRead:
    """Set ``credits_remaining`` to the ledger sum for the subscription."""

    try:
        audit = ledger_service.resync_subscription(db, subscription_id)
        db.commit()
    except LedgerRuleViolation as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return LedgerAuditRead.model_validate(audit)

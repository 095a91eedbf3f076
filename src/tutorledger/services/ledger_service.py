"""Class credit ledger: balances, deduction/restoration and audits."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    ACTIVE_STATUSES,
    CreditLedger,
    CreditTransactionType,
    Profile,
    ProfileRole,
    StudentSubscription,
)
from .stores import CreditErrorCode, DeductionResult, RestoreResult

logger = logging.getLogger(__name__)

COMPLETING_ROLES = (ProfileRole.TUTOR, ProfileRole.ADMIN)


class LedgerRuleViolation(Exception):
    """Raised when a ledger operation cannot be performed."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


def latest_balance(session: Session, student_id: UUID) -> int:
    """Return ``balance_after`` of the student's most recent entry (0 if none)."""

    stmt = (
        select(CreditLedger.balance_after)
        .where(CreditLedger.student_id == student_id)
        .order_by(CreditLedger.ledger_entry_id.desc())
        .limit(1)
    )
    balance = session.execute(stmt).scalar_one_or_none()
    return balance if balance is not None else 0


def active_subscription(session: Session, student_id: UUID, *, lock: bool = False) -> Optional[StudentSubscription]:
    stmt = (
        select(StudentSubscription)
        .where(
            StudentSubscription.student_id == student_id,
            StudentSubscription.status.in_(ACTIVE_STATUSES),
        )
        .order_by(StudentSubscription.created_at.desc())
        .limit(1)
    )
    if lock:
        stmt = stmt.with_for_update()
    return session.execute(stmt).scalar_one_or_none()


def latest_subscription(session: Session, student_id: UUID) -> Optional[StudentSubscription]:
    stmt = (
        select(StudentSubscription)
        .where(StudentSubscription.student_id == student_id)
        .order_by(StudentSubscription.created_at.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def append_entry(
    session: Session,
    *,
    student_id: UUID,
    transaction_type: CreditTransactionType,
    amount: int,
    reason: str,
    subscription: Optional[StudentSubscription] = None,
    balance_after: Optional[int] = None,
    related_class_id: Optional[UUID] = None,
    reference_id: Optional[str] = None,
) -> CreditLedger:
    """Append a ledger entry and keep the subscription's cached balance in step."""

    if balance_after is None:
        balance_after = latest_balance(session, student_id) + amount

    entry = CreditLedger(
        student_id=student_id,
        subscription_id=subscription.subscription_id if subscription is not None else None,
        transaction_type=transaction_type,
        amount=amount,
        balance_after=balance_after,
        reason=reason,
        related_class_id=related_class_id,
        reference_id=reference_id,
    )
    session.add(entry)

    if subscription is not None:
        subscription.credits_remaining += amount
        subscription.updated_at = datetime.utcnow()

    session.flush()
    return entry


def reference_used(session: Session, student_id: UUID, reference_id: str) -> bool:
    stmt = select(CreditLedger.ledger_entry_id).where(
        CreditLedger.student_id == student_id,
        CreditLedger.reference_id == reference_id,
    )
    return session.execute(stmt.limit(1)).first() is not None


def allocate_credits(
    session: Session,
    subscription_id: UUID,
    *,
    amount: int,
    reason: str,
    reference_id: Optional[str] = None,
) -> CreditLedger:
    """Grant (positive) or correct (negative) a subscription's credits by hand.

    Grants are written as ``credit`` entries and also raise
    ``credits_allocated``; corrections are ``adjustment`` entries. The caller
    commits.
    """

    if amount == 0:
        raise LedgerRuleViolation("Amount must not be zero.")
    if not reason or not reason.strip():
        raise LedgerRuleViolation("A reason is required for manual credit changes.")

    subscription = _get_subscription(session, subscription_id, lock=True)
    if reference_id and reference_used(session, subscription.student_id, reference_id):
        raise LedgerRuleViolation(f"Reference {reference_id} has already been used", status_code=409)

    try:
        entry = append_entry(
            session,
            student_id=subscription.student_id,
            transaction_type=CreditTransactionType.CREDIT if amount > 0 else CreditTransactionType.ADJUSTMENT,
            amount=amount,
            reason=reason.strip(),
            subscription=subscription,
            reference_id=reference_id,
        )
    except IntegrityError as exc:
        session.rollback()
        raise LedgerRuleViolation(f"Reference {reference_id} has already been used", status_code=409) from exc

    if amount > 0:
        subscription.credits_allocated = (subscription.credits_allocated or 0) + amount
    logger.info(
        "manual credit change of %s for subscription %s (balance %s)",
        amount,
        subscription_id,
        entry.balance_after,
    )
    return entry


def _net_class_amount(session: Session, student_id: UUID, class_id: UUID) -> int:
    stmt = select(func.coalesce(func.sum(CreditLedger.amount), 0)).where(
        CreditLedger.student_id == student_id,
        CreditLedger.related_class_id == class_id,
    )
    return session.execute(stmt).scalar_one()


def _resolve_profile(session: Session, auth_token: str) -> Optional[Profile]:
    if not auth_token:
        return None
    stmt = select(Profile).where(Profile.access_token == auth_token)
    return session.execute(stmt).scalar_one_or_none()


class LedgerCreditService:
    """Server side of the deduct/restore credit operations.

    Each call is its own transaction: the subscription row is locked, the
    balance checked and the ledger written before committing.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def deduct_class_credit(
        self,
        student_id: UUID,
        class_id: UUID,
        class_label: str,
        auth_token: str,
        *,
        admin_override: bool = False,
    ) -> DeductionResult:
        session = self._session
        try:
            profile = _resolve_profile(session, auth_token)
            if profile is None:
                return self._fail(CreditErrorCode.OTHER, "Authentication failed")
            if profile.role not in COMPLETING_ROLES:
                return self._fail(CreditErrorCode.OTHER, "Only tutors and admins can complete classes")

            subscription = active_subscription(session, student_id, lock=True)
            if subscription is None:
                logger.info("no active subscription for student %s", student_id)
                return self._fail(CreditErrorCode.NO_SUBSCRIPTION, "No active subscription found")

            if _net_class_amount(session, student_id, class_id) < 0:
                remaining = subscription.credits_remaining
                session.rollback()
                logger.info("class %s already holds a debit; returning idempotent result", class_id)
                return DeductionResult(success=True, credits_remaining=remaining, idempotent=True)

            override_used = False
            if subscription.credits_remaining < 1:
                if admin_override and profile.role == ProfileRole.ADMIN:
                    override_used = True
                else:
                    return self._fail(CreditErrorCode.INSUFFICIENT_CREDITS, "Insufficient credits")

            entry = append_entry(
                session,
                student_id=student_id,
                transaction_type=CreditTransactionType.DEBIT,
                amount=-1,
                reason=f"Class completed: {class_label}",
                subscription=subscription,
                related_class_id=class_id,
            )
            remaining = subscription.credits_remaining
            session.commit()
            logger.info(
                "deducted credit for class %s (entry %s, remaining %s, override %s)",
                class_id,
                entry.ledger_entry_id,
                remaining,
                override_used,
            )
            return DeductionResult(success=True, credits_remaining=remaining, admin_override=override_used)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("credit deduction failed for class %s", class_id)
            return DeductionResult(success=False, error_code=CreditErrorCode.OTHER, error="Failed to log credit transaction")

    def restore_class_credit(
        self,
        student_id: UUID,
        class_id: UUID,
        reason: str,
        auth_token: str,
    ) -> RestoreResult:
        session = self._session
        try:
            profile = _resolve_profile(session, auth_token)
            if profile is None or profile.role not in COMPLETING_ROLES:
                session.rollback()
                return RestoreResult(success=False, error="Only tutors and admins can restore credits")

            subscription = latest_subscription(session, student_id)
            entry = append_entry(
                session,
                student_id=student_id,
                transaction_type=CreditTransactionType.CREDIT,
                amount=1,
                reason=reason or "Credit restored - class completion error recovery",
                subscription=subscription,
                related_class_id=class_id,
            )
            new_balance = entry.balance_after
            session.commit()
            logger.info("restored credit for student %s, class %s (balance %s)", student_id, class_id, new_balance)
            return RestoreResult(success=True, new_balance=new_balance)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("credit restoration failed for class %s", class_id)
            return RestoreResult(success=False, error="Failed to restore credit")

    def allocate_credits(
        self,
        subscription_id: UUID,
        *,
        amount: int,
        reason: str,
        reference_id: Optional[str] = None,
    ) -> CreditLedger:
        """Commit a manual grant or correction; see :func:`allocate_credits`."""

        session = self._session
        try:
            entry = allocate_credits(
                session,
                subscription_id,
                amount=amount,
                reason=reason,
                reference_id=reference_id,
            )
            session.commit()
        except LedgerRuleViolation:
            session.rollback()
            raise
        session.refresh(entry)
        return entry

    def _fail(self, code: CreditErrorCode, message: str) -> DeductionResult:
        self._session.rollback()
        return DeductionResult(success=False, error_code=code, error=message)


@dataclass
class LedgerAudit:
    """Comparison of the cached balance against the ledger."""

    subscription_id: UUID
    student_id: UUID
    cached_credits: int
    ledger_total: int
    latest_balance_after: int
    chain_breaks: list[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return self.cached_credits == self.ledger_total and not self.chain_breaks


def _get_subscription(session: Session, subscription_id: UUID, *, lock: bool = False) -> StudentSubscription:
    subscription = session.get(StudentSubscription, subscription_id, with_for_update=True if lock else None)
    if subscription is None:
        raise LedgerRuleViolation(f"Subscription {subscription_id} not found", status_code=404)
    return subscription


def audit_subscription(session: Session, subscription_id: UUID) -> LedgerAudit:
    """Check ``credits_remaining`` against the ledger and the balance chain."""

    subscription = _get_subscription(session, subscription_id)

    total_stmt = select(func.coalesce(func.sum(CreditLedger.amount), 0)).where(
        CreditLedger.subscription_id == subscription.subscription_id
    )
    ledger_total = session.execute(total_stmt).scalar_one()

    entries_stmt = (
        select(CreditLedger)
        .where(CreditLedger.student_id == subscription.student_id)
        .order_by(CreditLedger.ledger_entry_id.asc())
    )
    previous = 0
    breaks: list[int] = []
    for entry in session.execute(entries_stmt).scalars():
        if entry.balance_after != previous + entry.amount:
            breaks.append(entry.ledger_entry_id)
        previous = entry.balance_after

    return LedgerAudit(
        subscription_id=subscription.subscription_id,
        student_id=subscription.student_id,
        cached_credits=subscription.credits_remaining,
        ledger_total=ledger_total,
        latest_balance_after=previous,
        chain_breaks=breaks,
    )


def resync_subscription(session: Session, subscription_id: UUID) -> LedgerAudit:
    """Rewrite the cached balance from the ledger sum and return the new audit."""

    audit = audit_subscription(session, subscription_id)
    if audit.cached_credits != audit.ledger_total:
        subscription = _get_subscription(session, subscription_id)
        logger.warning(
            "resyncing subscription %s: cached %s -> ledger %s",
            subscription_id,
            audit.cached_credits,
            audit.ledger_total,
        )
        subscription.credits_remaining = audit.ledger_total
        subscription.updated_at = datetime.utcnow()
        session.flush()
        audit.cached_credits = audit.ledger_total
    return audit


def audit_all(session: Session) -> list[LedgerAudit]:
    subscription_ids = session.execute(select(StudentSubscription.subscription_id)).scalars().all()
    return [audit_subscription(session, subscription_id) for subscription_id in subscription_ids]


def list_ledger_entries(
    session: Session,
    *,
    student_id: UUID,
    limit: int = 50,
    offset: int = 0,
) -> Sequence[CreditLedger]:
    """Return the student's credit history, newest first."""

    stmt = (
        select(CreditLedger)
        .where(CreditLedger.student_id == student_id)
        .order_by(CreditLedger.ledger_entry_id.desc())
        .offset(offset)
        .limit(limit)
    )
    return session.execute(stmt).scalars().all()

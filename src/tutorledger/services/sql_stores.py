"""SQLAlchemy implementations of the store protocols.

Every write commits on its own, mirroring the independent remote calls the
saga is built around; a failed write is rolled back and surfaces as
:class:`StoreError`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import Iterator, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import ClassLog, ScheduledClass, Student, StudentSubscription, Tutor
from . import ledger_service
from .completion_service import CompletionStores
from .ledger_service import LedgerCreditService
from .reconciliation_service import PaymentReconciler
from .stores import (
    AuthSession,
    ClassLogRecord,
    LedgerEntryDraft,
    StaticSessionProvider,
    StoreError,
    StudentAccount,
    SubscriptionSnapshot,
    UnpaidClass,
)

logger = logging.getLogger(__name__)


class _SqlStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _write(self, action: str) -> Iterator[Session]:
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("%s failed: %s", action, exc)
            raise StoreError(f"{action} failed") from exc

    def _read(self, stmt):
        try:
            return self.session.execute(stmt)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Store lookup failed") from exc


class SqlScheduleStore(_SqlStore):
    def get_scheduled_class(self, class_id: UUID) -> Optional[ScheduledClass]:
        return self._read(select(ScheduledClass).where(ScheduledClass.class_id == class_id)).scalar_one_or_none()

    def delete_scheduled_class(self, class_id: UUID) -> None:
        with self._write("Deleting scheduled class") as session:
            session.execute(delete(ScheduledClass).where(ScheduledClass.class_id == class_id))


class SqlClassLogStore(_SqlStore):
    def find_by_origin_id(self, schedule_id: UUID) -> Optional[ClassLog]:
        return self._read(select(ClassLog).where(ClassLog.origin_schedule_id == schedule_id)).scalar_one_or_none()

    def insert_class_log(self, record: ClassLogRecord) -> None:
        with self._write("Inserting class log") as session:
            session.add(ClassLog(**asdict(record)))
            session.flush()

    def delete_by_origin_id(self, schedule_id: UUID) -> None:
        with self._write("Deleting class log") as session:
            session.execute(delete(ClassLog).where(ClassLog.origin_schedule_id == schedule_id))

    def list_class_numbers(self, class_date: date) -> Sequence[str]:
        return self._read(select(ClassLog.class_number).where(ClassLog.date == class_date)).scalars().all()

    def list_unpaid_classes(self, student: StudentAccount) -> Sequence[UnpaidClass]:
        stmt = (
            select(ClassLog.log_id, ClassLog.date, ClassLog.class_cost)
            .where(
                or_(ClassLog.student_name == student.name, ClassLog.student_name == student.email),
                ClassLog.student_payment_date.is_(None),
            )
            .order_by(ClassLog.date.asc(), ClassLog.created_at.asc())
        )
        return [UnpaidClass(log_id=row.log_id, date=row.date, cost=row.class_cost) for row in self._read(stmt)]

    def batch_mark_paid(self, log_ids: Sequence[UUID], paid_on: date) -> None:
        if not log_ids:
            return
        with self._write("Marking classes paid") as session:
            session.execute(
                update(ClassLog).where(ClassLog.log_id.in_(list(log_ids))).values(student_payment_date=paid_on)
            )


class SqlRateStore(_SqlStore):
    def get_student_rate(self, student_name: str) -> Optional[Decimal]:
        return self._read(select(Student.class_rate).where(Student.name == student_name)).scalar_one_or_none()

    def get_tutor_rate(self, tutor_name: str) -> Optional[Decimal]:
        return self._read(select(Tutor.hourly_rate).where(Tutor.name == tutor_name)).scalar_one_or_none()


class SqlStudentStore(_SqlStore):
    def get_student_account(self, name: str) -> Optional[StudentAccount]:
        stmt = select(Student).where(or_(Student.name == name, Student.email == name))
        student = self._read(stmt).scalars().first()
        if student is None:
            return None
        return StudentAccount(
            student_id=student.student_id,
            name=student.name,
            email=student.email,
            class_rate=student.class_rate,
            prepaid_balance=student.prepaid_balance or Decimal("0.00"),
        )

    def set_prepaid_balance(self, student_id: UUID, amount: Decimal) -> None:
        with self._write("Updating prepaid balance") as session:
            session.execute(update(Student).where(Student.student_id == student_id).values(prepaid_balance=amount))


class SqlLedgerStore(_SqlStore):
    def latest_balance(self, student_id: UUID) -> int:
        try:
            return ledger_service.latest_balance(self.session, student_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Reading ledger balance failed") from exc

    def current_subscription(self, student_id: UUID) -> Optional[SubscriptionSnapshot]:
        try:
            subscription = ledger_service.latest_subscription(self.session, student_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Reading subscription failed") from exc
        if subscription is None:
            return None
        return SubscriptionSnapshot(
            subscription_id=subscription.subscription_id,
            credits_remaining=subscription.credits_remaining,
        )

    def reference_used(self, student_id: UUID, reference_id: str) -> bool:
        try:
            return ledger_service.reference_used(self.session, student_id, reference_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Reading payment references failed") from exc

    def append_entry(self, entry: LedgerEntryDraft) -> int:
        with self._write("Appending ledger entry") as session:
            subscription = None
            if entry.subscription_id is not None:
                subscription = session.get(StudentSubscription, entry.subscription_id)
            created = ledger_service.append_entry(
                session,
                student_id=entry.student_id,
                transaction_type=entry.transaction_type,
                amount=entry.amount,
                reason=entry.reason,
                subscription=subscription,
                balance_after=entry.balance_after,
                related_class_id=entry.related_class_id,
                reference_id=entry.reference_id,
            )
            entry_id = created.ledger_entry_id
        return entry_id


def sql_completion_stores(session: Session, auth_session: Optional[AuthSession]) -> CompletionStores:
    """Wire the completion saga to the database behind ``session``."""

    return CompletionStores(
        schedule=SqlScheduleStore(session),
        class_logs=SqlClassLogStore(session),
        rates=SqlRateStore(session),
        credits=LedgerCreditService(session),
        sessions=StaticSessionProvider(auth_session),
    )


def sql_payment_reconciler(session: Session) -> PaymentReconciler:
    return PaymentReconciler(
        students=SqlStudentStore(session),
        class_logs=SqlClassLogStore(session),
        ledger=SqlLedgerStore(session),
    )

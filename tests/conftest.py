import os

# Settings are read at import time; point them at SQLite before importing the app.
os.environ["TUTORLEDGER_DATABASE_URL"] = "sqlite://"
os.environ["TUTORLEDGER_LEDGER_AUDIT_ENABLED"] = "false"
os.environ["TUTORLEDGER_PURCHASE_URL"] = "/pricing"

from datetime import date, time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tutorledger.core.database import Base, get_db
from tutorledger.main import app
from tutorledger.models import (
    CreditTransactionType,
    Profile,
    ProfileRole,
    ScheduledClass,
    Student,
    StudentSubscription,
    Tutor,
)
from tutorledger.services import ledger_service

ADMIN_TOKEN = "admin-token"
TUTOR_TOKEN = "tutor-token"
STUDENT_TOKEN = "student-token"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def profiles(db):
    admin = Profile(email="admin@example.com", display_name="Admin", role=ProfileRole.ADMIN, access_token=ADMIN_TOKEN)
    tutor = Profile(email="john.doe@example.com", display_name="John Doe", role=ProfileRole.TUTOR, access_token=TUTOR_TOKEN)
    student = Profile(
        email="sarah.miller@example.com",
        display_name="Sarah Miller",
        role=ProfileRole.STUDENT,
        access_token=STUDENT_TOKEN,
    )
    db.add_all([admin, tutor, student])
    db.commit()
    return {"admin": admin, "tutor": tutor, "student": student}


@pytest.fixture
def student(db):
    record = Student(
        name="Sarah Miller",
        email="sarah.miller@example.com",
        class_rate=Decimal("50.00"),
        payment_method="zelle",
        prepaid_balance=Decimal("0.00"),
    )
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def tutor(db):
    record = Tutor(name="John Doe", email="john.doe@example.com", hourly_rate=Decimal("30.00"))
    db.add(record)
    db.commit()
    return record


def make_subscription(db, student, credits):
    subscription = StudentSubscription(
        student_id=student.student_id,
        plan_id="plan-4",
        credits_remaining=0,
        credits_allocated=0,
    )
    db.add(subscription)
    db.flush()
    if credits:
        ledger_service.append_entry(
            db,
            student_id=student.student_id,
            transaction_type=CreditTransactionType.CREDIT,
            amount=credits,
            reason="Monthly allocation",
            subscription=subscription,
        )
        subscription.credits_allocated = credits
    db.commit()
    return subscription


def make_scheduled_class(db, student, tutor, class_date=date(2024, 12, 15)):
    scheduled = ScheduledClass(
        tutor_id=tutor.tutor_id,
        student_id=student.student_id,
        title="Algebra Fundamentals",
        subject="Math",
        date=class_date,
        start_time=time(14, 0),
        end_time=time(15, 0),
    )
    db.add(scheduled)
    db.commit()
    return scheduled


def completion_payload(student, **overrides):
    payload = {
        "student_id": str(student.student_id),
        "tutor_name": "John Doe",
        "student_name": "Sarah Miller",
        "date": "2024-12-15",
        "start_time": "14:00",
        "end_time": "15:00",
        "subject": "Math",
        "content": "Covered quadratic equations and factoring",
        "homework": "Complete worksheet problems 1-20",
    }
    payload.update(overrides)
    return payload

"""Student and tutor profile models."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base


class Student(Base):
    """A student taking classes, with billing preferences and cash float."""

    __tablename__ = "students"
    __table_args__ = (
        UniqueConstraint("name", name="students_name_unique"),
        UniqueConstraint("email", name="students_email_unique"),
        CheckConstraint("prepaid_balance >= 0", name="students_prepaid_balance_positive"),
    )

    student_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    class_rate = Column(Numeric(10, 2))
    payment_method = Column(String)
    prepaid_balance = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    subscriptions = relationship("StudentSubscription", back_populates="student")
    ledger_entries = relationship("CreditLedger", back_populates="student")
    scheduled_classes = relationship("ScheduledClass", back_populates="student")


class Tutor(Base):
    """A tutor; the hourly rate feeds the tutor cost snapshot on class logs."""

    __tablename__ = "tutors"
    __table_args__ = (UniqueConstraint("name", name="tutors_name_unique"),)

    tutor_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    email = Column(String)
    hourly_rate = Column(Numeric(10, 2))
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    scheduled_classes = relationship("ScheduledClass", back_populates="tutor")

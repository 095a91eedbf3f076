"""Student subscription model holding the cached credit balance."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base


class SubscriptionStatus(str, enum.Enum):
    """Billing states mirrored from the payment provider."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAUSED = "paused"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class StudentSubscription(Base):
    """Credit-bearing subscription.

    ``credits_remaining`` is a cache of the ledger sum and is only written
    together with a ledger entry.
    """

    __tablename__ = "student_subscriptions"

    subscription_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.student_id", ondelete="RESTRICT"), nullable=False)
    plan_id = Column(String)
    stripe_customer_id = Column(String)
    stripe_subscription_id = Column(String)
    status = Column(Enum(SubscriptionStatus, name="subscription_status"), nullable=False, default=SubscriptionStatus.ACTIVE)
    credits_remaining = Column(Integer, nullable=False, default=0)
    credits_allocated = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    student = relationship("Student", back_populates="subscriptions")
    ledger_entries = relationship("CreditLedger", back_populates="subscription")

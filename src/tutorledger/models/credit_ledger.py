"""Credit ledger model capturing balance movements."""

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base


class CreditTransactionType(str, enum.Enum):
    """Ledger transaction classification."""

    CREDIT = "credit"
    DEBIT = "debit"
    ADJUSTMENT = "adjustment"


class CreditLedger(Base):
    """Append-only ledger of class credit movements for each student.

    ``balance_after`` is a snapshot written with the entry; it is never
    recomputed. Corrections are new entries.
    """

    __tablename__ = "class_credits_ledger"
    __table_args__ = (
        CheckConstraint(
            "((transaction_type = 'CREDIT' AND amount > 0) "
            "OR (transaction_type = 'DEBIT' AND amount < 0) "
            "OR transaction_type = 'ADJUSTMENT')",
            name="class_credits_ledger_amount_sign",
        ),
        UniqueConstraint("student_id", "reference_id", name="class_credits_ledger_reference_unique"),
    )

    ledger_entry_id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Uuid, ForeignKey("students.student_id", ondelete="RESTRICT"), nullable=False)
    subscription_id = Column(Uuid, ForeignKey("student_subscriptions.subscription_id", ondelete="SET NULL"))
    transaction_type = Column(Enum(CreditTransactionType, name="credit_transaction_type"), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    related_class_id = Column(Uuid)
    reference_id = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    student = relationship("Student", back_populates="ledger_entries")
    subscription = relationship("StudentSubscription", back_populates="ledger_entries")

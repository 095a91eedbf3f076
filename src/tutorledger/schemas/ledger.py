"""Ledger schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models import CreditTransactionType


class LedgerEntryRead(BaseModel):
    """Represents a credit ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    ledger_entry_id: int
    student_id: UUID
    subscription_id: Optional[UUID]
    transaction_type: CreditTransactionType
    amount: int
    balance_after: int
    reason: str
    related_class_id: Optional[UUID]
    reference_id: Optional[str]
    created_at: datetime


class LedgerAuditRead(BaseModel):
    """Cached balance compared against the ledger."""

    model_config = ConfigDict(from_attributes=True)

    subscription_id: UUID
    student_id: UUID
    cached_credits: int
    ledger_total: int
    latest_balance_after: int
    chain_breaks: List[int]
    consistent: bool


class CreditAllocationCreate(BaseModel):
    """Manual credit grant (positive) or correction (negative)."""

    amount: int = Field(..., description="Signed number of credits")
    reason: str = Field(..., min_length=1)
    reference_id: Optional[str] = Field(None, min_length=1)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Reason cannot be blank.")
        return value.strip()

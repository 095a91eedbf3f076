"""Pydantic schemas for manual payment recording."""

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    """Cash or Zelle payment entered by an admin."""

    student_name: str = Field(..., min_length=1, description="Student name or email.")
    amount_received: Decimal = Field(..., gt=0, decimal_places=2)
    payment_date: date = Field(default_factory=date.today)
    payment_method: str = Field("zelle")
    reason: Optional[str] = Field(None, max_length=280)
    reference_id: Optional[str] = Field(None, description="Receipt or transfer id; one ledger credit per id.")


class UnpaidClassRead(BaseModel):
    log_id: UUID
    date: date
    cost: Optional[Decimal]


class PaymentCalculationRead(BaseModel):
    student_id: UUID
    student_name: str
    class_rate: Decimal
    existing_surplus: Decimal
    amount_received: Decimal
    total_available: Decimal
    classes_to_mark: List[UnpaidClassRead]
    unpaid_cost_covered: Decimal
    remaining_after_unpaid: Decimal
    credits_to_add: int
    new_surplus: Decimal
    new_credits_total: int
    unpaid_remaining: int


class PaymentApplicationRead(BaseModel):
    success: bool
    summary: str
    classes_marked: int
    credits_added: int
    ledger_entry_id: Optional[int] = None
    surplus_stored: Optional[Decimal] = None
    completed_steps: List[str]
    failed_step: Optional[str] = None
    calculation: PaymentCalculationRead

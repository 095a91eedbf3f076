"""Pydantic schemas for class completion."""

from datetime import date, time
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from ..utils.class_numbers import is_valid_class_number


class ClassCompletionCreate(BaseModel):
    """Request body for completing a scheduled class."""

    class_number: Optional[str] = Field(
        None,
        description="Human-readable class number; generated from initials and date when omitted.",
    )
    student_id: UUID
    tutor_name: str = Field(..., min_length=1)
    student_name: str = Field(..., min_length=1)
    date: date
    start_time: time
    end_time: time
    subject: str = Field(..., min_length=1)
    title: Optional[str] = None
    content: str = Field(..., min_length=1, description="What was covered in the class.")
    homework: Optional[str] = None
    additional_info: Optional[str] = None
    admin_override: bool = Field(False, description="Allow completion at zero balance (admins only).")

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Content covered is required.")
        return value

    @field_validator("class_number")
    @classmethod
    def class_number_format(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_class_number(value):
            raise ValueError("Class number must look like SM-JD-20241119-1.")
        return value


class NotificationActionRead(BaseModel):
    label: str
    url: str


class NotificationRead(BaseModel):
    level: str
    message: str
    description: Optional[str] = None
    action: Optional[NotificationActionRead] = None


class CompletionRead(BaseModel):
    """Result of a completion attempt."""

    success: bool
    state: str
    failure: Optional[str] = None
    class_number: str
    credits_remaining: Optional[int] = None
    admin_override: bool = False
    credit_restored: Optional[bool] = None
    notification: NotificationRead


class NextClassNumberRead(BaseModel):
    class_number: str

"""Authenticated user profiles."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, String, UniqueConstraint, Uuid

from ..core.database import Base


class ProfileRole(str, enum.Enum):
    """Roles a signed-in user can hold."""

    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"


class Profile(Base):
    """A signed-in user. The access token resolves request sessions."""

    __tablename__ = "profiles"
    __table_args__ = (
        UniqueConstraint("email", name="profiles_email_unique"),
        UniqueConstraint("access_token", name="profiles_access_token_unique"),
    )

    profile_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    role = Column(Enum(ProfileRole, name="profile_role"), nullable=False, default=ProfileRole.STUDENT)
    access_token = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

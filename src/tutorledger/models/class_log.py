"""Immutable record of a completed class."""

import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Numeric, String, Text, UniqueConstraint, Uuid

from ..core.database import Base


class ClassLog(Base):
    """Completed session with costs snapshotted at completion time.

    ``origin_schedule_id`` is unique so that two concurrent completions of
    the same scheduled class cannot both insert a log.
    """

    __tablename__ = "class_logs"
    __table_args__ = (
        UniqueConstraint("class_number", name="class_logs_class_number_unique"),
        UniqueConstraint("origin_schedule_id", name="class_logs_origin_schedule_unique"),
    )

    log_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    class_number = Column(String, nullable=False)
    origin_schedule_id = Column(Uuid, nullable=False)
    title = Column(String, nullable=False)
    tutor_name = Column(String, nullable=False)
    student_name = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    day = Column(String, nullable=False)
    time_range = Column(String, nullable=False)
    duration_hours = Column(Numeric(5, 2), nullable=False)
    subject = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    homework = Column(Text)
    additional_info = Column(Text)
    class_cost = Column(Numeric(10, 2))
    tutor_cost = Column(Numeric(10, 2))
    student_payment_date = Column(Date)
    tutor_payment_date = Column(Date)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

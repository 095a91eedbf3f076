"""Scheduled (not yet completed) class sessions."""

import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text, Time, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base


class ScheduledClass(Base):
    """A planned session. Deleted once the class is completed or cancelled."""

    __tablename__ = "scheduled_classes"

    class_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tutor_id = Column(Uuid, ForeignKey("tutors.tutor_id", ondelete="RESTRICT"), nullable=False)
    student_id = Column(Uuid, ForeignKey("students.student_id", ondelete="RESTRICT"), nullable=False)
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default="scheduled")
    zoom_link = Column(String)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tutor = relationship("Tutor", back_populates="scheduled_classes")
    student = relationship("Student", back_populates="scheduled_classes")

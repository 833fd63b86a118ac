"""Payment record: registration and course fee status per lead. Created with the lead."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from app.core.enums import PaymentStatus
from app.db.session import Base


class PaymentRecord(Base):
    """One row per lead. course_status may only become PAID while registration_status is PAID."""

    __tablename__ = "payment_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, unique=True)
    registration_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    course_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=True)
    registration_amount = Column(Numeric(12, 2), nullable=True)
    course_amount = Column(Numeric(12, 2), nullable=True)
    registration_paid_at = Column(DateTime(timezone=True), nullable=True)
    course_paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lead = relationship("Lead", back_populates="payment_record")

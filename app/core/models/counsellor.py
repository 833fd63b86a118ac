"""Counsellor: staff capacity unit. assigned_count never exceeds max_capacity."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from app.db.session import Base


class Counsellor(Base):
    __tablename__ = "counsellors"
    __table_args__ = (
        CheckConstraint("max_capacity >= 1", name="ck_counsellor_capacity_positive"),
        CheckConstraint("assigned_count >= 0", name="ck_counsellor_assigned_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(50), nullable=True)
    max_capacity = Column(Integer, nullable=False, default=10)
    # Non-terminal leads currently assigned; changed only by guarded UPDATEs
    assigned_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    leads = relationship("Lead", back_populates="counsellor", foreign_keys="Lead.counsellor_id")

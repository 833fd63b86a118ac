"""
Lead: a prospective student. decision_state moves only through the decision engine;
the interview (meet_link / interview_at) is an independent field owned by the scheduler.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.core.enums import INTERVIEW_SCHEDULED, TERMINAL_DECISION_STATES, DecisionState, LeadSource
from app.db.session import Base


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone = Column(String(50), nullable=False)
    education = Column(Text, nullable=True)
    lead_source = Column(String(30), nullable=False, default=LeadSource.WEBSITE.value)
    decision_state = Column(String(30), nullable=False, default=DecisionState.NEW.value, index=True)
    counsellor_id = Column(Integer, ForeignKey("counsellors.id", ondelete="SET NULL"), nullable=True, index=True)
    # Bound only on ACCEPT
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=True)
    meet_link = Column(String(500), nullable=True)
    interview_at = Column(DateTime(timezone=True), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    counsellor = relationship("Counsellor", back_populates="leads", foreign_keys=[counsellor_id])
    course = relationship("Course", foreign_keys=[course_id])
    payment_record = relationship(
        "PaymentRecord", back_populates="lead", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def application_status(self) -> str:
        """Display status composed from decision_state and the interview; never stored."""
        if self.decision_state in TERMINAL_DECISION_STATES:
            return self.decision_state
        if self.meet_link:
            return INTERVIEW_SCHEDULED
        return self.decision_state

    @property
    def is_terminal(self) -> bool:
        return self.decision_state in TERMINAL_DECISION_STATES

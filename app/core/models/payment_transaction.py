"""Payment transaction: one gateway order per initiation attempt."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String

from app.core.enums import TransactionStatus
from app.db.session import Base


class PaymentTransaction(Base):
    """Gateway order for a registration or course fee. Only confirmation writes PAID."""

    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_type = Column(String(20), nullable=False)  # REGISTRATION, COURSE_FEE
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=False)
    order_id = Column(String(100), nullable=False, unique=True, index=True)
    gateway_payment_id = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=TransactionStatus.CREATED.value)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

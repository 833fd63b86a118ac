from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.core.enums import UserRole
from app.db.session import Base


class User(Base):
    """Back-office staff account."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    # ADMIN manages catalog and counsellors; STAFF runs the admissions workflow
    role = Column(String(50), nullable=False, default=UserRole.STAFF.value)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

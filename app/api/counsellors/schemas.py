from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class CounsellorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    max_capacity: int = Field(10, ge=1)


class CounsellorUpdate(BaseModel):
    """Partial update; id travels in the body."""

    id: int
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    max_capacity: Optional[int] = Field(None, ge=1)


class CounsellorAssign(BaseModel):
    student_id: int
    counsellor_id: int


class CounsellorResponse(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    max_capacity: int
    assigned_count: int
    available_slots: int
    utilization: float = Field(..., description="assigned_count / max_capacity, in percent")
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AssignedLead(BaseModel):
    student_id: int
    name: str
    email: str
    phone: str
    application_status: str
    created_at: datetime


class CounsellorWithLeads(BaseModel):
    counsellor: CounsellorResponse
    leads: List[AssignedLead]


class CounsellorAssignResponse(BaseModel):
    student_id: int
    counsellor_id: int
    counselor_name: str

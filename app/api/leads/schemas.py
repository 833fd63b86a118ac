from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.enums import LeadSource


class LeadCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=50)
    education: Optional[str] = Field(None, max_length=2000)
    lead_source: LeadSource = LeadSource.WEBSITE
    counsellor_id: Optional[int] = Field(None, description="Assign explicitly; otherwise least-utilized counsellor")

    @field_validator("name", "phone")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("lead_source", mode="before")
    @classmethod
    def normalize_lead_source(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return LeadSource.WEBSITE
        if isinstance(v, str):
            return v.strip().lower().replace("_", "-").replace(" ", "-")
        return v


class LeadCreateResponse(BaseModel):
    student_id: int
    counselor_name: Optional[str] = None
    email: str


class InterviewInfo(BaseModel):
    meet_link: str
    scheduled_at: Optional[datetime] = None


class LeadResponse(BaseModel):
    """Lead with its payment status. application_status is a display value only."""

    id: int
    student_id: int
    name: str
    email: str
    phone: str
    education: Optional[str] = None
    lead_source: str
    decision_state: str
    application_status: str
    counsellor_id: Optional[int] = None
    counselor_name: Optional[str] = None
    course_id: Optional[int] = None
    registration_fee_status: str
    course_fee_status: str
    interview: Optional[InterviewInfo] = None
    meet_link: Optional[str] = None
    interview_scheduled_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class FailedLead(BaseModel):
    row: int
    email: Optional[str] = None
    reason: str


class LeadBulkUploadResponse(BaseModel):
    success_count: int
    failed_count: int
    failed_leads: List[FailedLead]

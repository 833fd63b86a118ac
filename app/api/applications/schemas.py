from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.core.enums import DecisionAction, PaymentType

NEXT_STEP_COURSE_FEE = "COURSE_FEE_PAYMENT"


class StartReviewRequest(BaseModel):
    student_id: int
    remarks: Optional[str] = Field(None, max_length=2000)


class StartReviewResponse(BaseModel):
    student_id: int
    decision_state: str
    application_status: str


class ApplicationActionRequest(BaseModel):
    """ACCEPT requires selected_course_id. ACCEPTED / REJECTED are accepted as aliases."""

    student_id: int
    status: DecisionAction
    selected_course_id: Optional[int] = None
    remarks: Optional[str] = Field(None, max_length=2000)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            value = v.strip().upper()
            return {"ACCEPTED": "ACCEPT", "REJECTED": "REJECT"}.get(value, value)
        return v


class CoursePaymentDetails(BaseModel):
    course_id: int
    course_name: str
    amount: Decimal
    currency: str
    payment_type: PaymentType = PaymentType.COURSE_FEE


class AcceptDecisionResponse(BaseModel):
    student_id: int
    decision_state: str
    course_fee: Decimal
    next_step: str = NEXT_STEP_COURSE_FEE
    payment_details: CoursePaymentDetails
    decided_at: datetime


class RejectDecisionResponse(BaseModel):
    student_id: int
    decision_state: str
    result: str = "rejected"
    decided_at: datetime

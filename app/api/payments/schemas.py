from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.core.enums import PaymentType


class PaymentInitiateRequest(BaseModel):
    student_id: int
    payment_type: PaymentType
    course_id: Optional[int] = Field(None, description="Required for COURSE_FEE")
    amount: Optional[Decimal] = Field(None, description="Ignored; the amount is computed server-side")

    @field_validator("payment_type", mode="before")
    @classmethod
    def normalize_payment_type(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class PaymentInitiateResponse(BaseModel):
    order_id: str
    amount: Decimal
    amount_subunits: int
    currency: str
    payment_type: PaymentType
    key_id: Optional[str] = None


class PaymentVerifyRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class PaymentVerifyResponse(BaseModel):
    status: str
    order_id: str
    student_id: int
    payment_type: PaymentType
    paid_at: Optional[datetime] = None


class PaymentStatusResponse(BaseModel):
    student_id: int
    registration_status: str
    course_status: str
    course_id: Optional[int] = None


class WebhookAck(BaseModel):
    status: str
    event: Optional[str] = None

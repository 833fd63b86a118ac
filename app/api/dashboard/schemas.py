import datetime
from typing import List

from pydantic import BaseModel


class DailyLeadCount(BaseModel):
    date: datetime.date
    count: int


class DashboardStats(BaseModel):
    total_leads: int
    accepted: int
    rejected: int
    pending_review: int
    interviews_scheduled: int
    leads_this_month: int
    conversion_rate: float
    registration_paid: int
    course_fee_paid: int
    leads_last_7_days: List[DailyLeadCount]

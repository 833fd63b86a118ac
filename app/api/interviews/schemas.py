from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ScheduleMeetRequest(BaseModel):
    student_id: int


class ScheduleMeetResponse(BaseModel):
    meet_link: str
    student_id: int
    scheduled_at: Optional[datetime] = None
    created: bool = True

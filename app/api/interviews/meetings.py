"""
Meeting provider client. With MEETING_API_URL set, meetings are created through that
service; otherwise a meeting link is generated under MEETING_BASE_URL.
"""

import logging
import secrets
import string
from datetime import datetime
from typing import Optional

import httpx
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


class MeetingDetails(BaseModel):
    meet_link: str
    scheduled_at: datetime


def generate_meeting_code() -> str:
    """Random code shaped like abc-defg-hij."""
    letters = string.ascii_lowercase
    parts = [3, 4, 3]
    return "-".join("".join(secrets.choice(letters) for _ in range(n)) for n in parts)


class MeetingProvider:
    def __init__(
        self,
        api_url: Optional[str],
        base_url: str = "https://meet.google.com",
        timeout: float = 10.0,
    ) -> None:
        self._api_url = api_url
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def create_meeting(
        self,
        summary: str,
        start_time: datetime,
        duration_minutes: int,
        attendee_email: Optional[str] = None,
    ) -> MeetingDetails:
        if not self._api_url:
            return MeetingDetails(
                meet_link=f"{self._base_url}/{generate_meeting_code()}",
                scheduled_at=start_time,
            )

        body = {
            "summary": summary,
            "start_time": start_time.isoformat(),
            "duration_minutes": duration_minutes,
            "attendee_email": attendee_email,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._api_url, json=body)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Meeting provider failed for %s: %s", summary, e)
            raise UpstreamUnavailable("Meeting provider is unavailable") from e

        meet_link = data.get("meet_link")
        if not meet_link:
            logger.error("Meeting provider returned no link: %s", data)
            raise UpstreamUnavailable("Meeting provider returned no meeting link")
        return MeetingDetails(meet_link=meet_link, scheduled_at=start_time)


def get_meeting_provider() -> MeetingProvider:
    return MeetingProvider(
        api_url=settings.meeting_api_url,
        base_url=settings.meeting_base_url,
        timeout=settings.gateway_timeout_seconds,
    )

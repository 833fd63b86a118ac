"""
Interview scheduler. Scheduling is idempotent per lead: once a lead has a meeting,
schedule returns it unchanged; replacing it requires an explicit reschedule.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.leads import service as lead_service
from app.auth.schemas import CurrentUser
from app.core import audit_service
from app.core.config import settings
from app.core.enums import INTERVIEW_SCHEDULED, PaymentStatus
from app.core.exceptions import Conflict, PreconditionFailed
from app.core.models import Lead
from app.events.broker import event_broker

from .meetings import MeetingDetails, MeetingProvider
from .schemas import ScheduleMeetRequest, ScheduleMeetResponse

logger = logging.getLogger(__name__)


def _require_registration_paid(lead: Lead) -> None:
    record = lead.payment_record
    if not record or record.registration_status != PaymentStatus.PAID.value:
        raise PreconditionFailed("Registration fee payment required before scheduling an interview")


async def _create_meeting(provider: MeetingProvider, lead: Lead) -> MeetingDetails:
    start_time = datetime.utcnow().replace(microsecond=0) + timedelta(minutes=settings.interview_lead_minutes)
    return await provider.create_meeting(
        summary=f"Admission interview: {lead.name}",
        start_time=start_time,
        duration_minutes=settings.interview_duration_minutes,
        attendee_email=lead.email,
    )


async def _record_interview(
    db: AsyncSession,
    lead_id: int,
    meeting: MeetingDetails,
    action: str,
    previous_link: Optional[str],
    actor: Optional[CurrentUser],
) -> None:
    await audit_service.log_audit(
        db,
        "lead",
        lead_id,
        action,
        to_status=INTERVIEW_SCHEDULED,
        actor=actor,
        remarks=f"{meeting.meet_link} at {meeting.scheduled_at.isoformat()}"
        + (f" (was {previous_link})" if previous_link else ""),
    )
    await db.commit()
    logger.info("Interview for lead %s at %s: %s", lead_id, meeting.scheduled_at, meeting.meet_link)
    await event_broker.publish_lead_event(
        lead_id,
        "interview_scheduled",
        {"meet_link": meeting.meet_link, "scheduled_at": meeting.scheduled_at.isoformat()},
    )


async def schedule_interview(
    db: AsyncSession,
    provider: MeetingProvider,
    payload: ScheduleMeetRequest,
    actor: Optional[CurrentUser] = None,
) -> ScheduleMeetResponse:
    lead = await lead_service.get_lead_model(db, payload.student_id)
    _require_registration_paid(lead)
    if lead.meet_link:
        return ScheduleMeetResponse(
            meet_link=lead.meet_link, student_id=lead.id, scheduled_at=lead.interview_at, created=False
        )

    meeting = await _create_meeting(provider, lead)
    result = await db.execute(
        update(Lead)
        .where(Lead.id == lead.id, Lead.meet_link.is_(None))
        .values(meet_link=meeting.meet_link, interview_at=meeting.scheduled_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Lost the race to a concurrent schedule; keep the stored interview
        await db.rollback()
        await db.refresh(lead)
        logger.warning("Lead %s already had an interview; discarding %s", lead.id, meeting.meet_link)
        return ScheduleMeetResponse(
            meet_link=lead.meet_link, student_id=lead.id, scheduled_at=lead.interview_at, created=False
        )

    await _record_interview(db, lead.id, meeting, "interview_scheduled", None, actor)
    return ScheduleMeetResponse(
        meet_link=meeting.meet_link, student_id=lead.id, scheduled_at=meeting.scheduled_at
    )


async def reschedule_interview(
    db: AsyncSession,
    provider: MeetingProvider,
    payload: ScheduleMeetRequest,
    actor: Optional[CurrentUser] = None,
) -> ScheduleMeetResponse:
    """Replace an existing interview with a new meeting."""
    lead = await lead_service.get_lead_model(db, payload.student_id)
    _require_registration_paid(lead)
    if not lead.meet_link:
        raise PreconditionFailed("No interview is scheduled for this lead; schedule one first")

    previous_link = lead.meet_link
    meeting = await _create_meeting(provider, lead)
    result = await db.execute(
        update(Lead)
        .where(Lead.id == lead.id, Lead.meet_link == previous_link)
        .values(meet_link=meeting.meet_link, interview_at=meeting.scheduled_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Interview was changed concurrently; reload and retry")

    await _record_interview(db, lead.id, meeting, "interview_rescheduled", previous_link, actor)
    return ScheduleMeetResponse(
        meet_link=meeting.meet_link, student_id=lead.id, scheduled_at=meeting.scheduled_at
    )

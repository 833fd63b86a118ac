"""
Lead registry. A lead and its payment record are created together; decision_state is
owned by the decision engine and the interview by the scheduler.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.counsellors import service as counsellor_service
from app.auth.schemas import CurrentUser
from app.core import audit_service
from app.core.enums import (
    INTERVIEW_SCHEDULED,
    OPEN_DECISION_STATES,
    TERMINAL_DECISION_STATES,
    DecisionState,
    PaymentStatus,
)
from app.core.exceptions import Conflict, InvalidArgument, NotFound
from app.core.models import Counsellor, Lead, PaymentRecord
from app.events.broker import event_broker

from .schemas import InterviewInfo, LeadCreate, LeadCreateResponse, LeadResponse

logger = logging.getLogger(__name__)

APPLICATION_STATUS_FILTERS = tuple(s.value for s in DecisionState) + (INTERVIEW_SCHEDULED,)


def _lead_to_response(lead: Lead) -> LeadResponse:
    record = lead.payment_record
    interview = (
        InterviewInfo(meet_link=lead.meet_link, scheduled_at=lead.interview_at)
        if lead.meet_link
        else None
    )
    return LeadResponse(
        id=lead.id,
        student_id=lead.id,
        name=lead.name,
        email=lead.email,
        phone=lead.phone,
        education=lead.education,
        lead_source=lead.lead_source,
        decision_state=lead.decision_state,
        application_status=lead.application_status,
        counsellor_id=lead.counsellor_id,
        counselor_name=lead.counsellor.name if lead.counsellor else None,
        course_id=lead.course_id,
        registration_fee_status=record.registration_status if record else PaymentStatus.PENDING.value,
        course_fee_status=record.course_status if record else PaymentStatus.PENDING.value,
        interview=interview,
        meet_link=lead.meet_link,
        interview_scheduled_at=lead.interview_at,
        decided_at=lead.decided_at,
        created_at=lead.created_at,
        updated_at=lead.updated_at,
    )


def _as_naive_utc(value: datetime) -> datetime:
    # Timestamps are stored as naive UTC
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _lead_query():
    return select(Lead).options(
        selectinload(Lead.counsellor),
        selectinload(Lead.payment_record),
    )


async def get_lead_model(db: AsyncSession, lead_id: int) -> Lead:
    """Load a lead with counsellor and payment record, or raise NotFound."""
    result = await db.execute(_lead_query().where(Lead.id == lead_id))
    lead = result.scalar_one_or_none()
    if not lead:
        raise NotFound(f"Lead {lead_id} not found")
    return lead


async def get_lead(db: AsyncSession, lead_id: int) -> LeadResponse:
    return _lead_to_response(await get_lead_model(db, lead_id))


async def list_leads(
    db: AsyncSession,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    status_filter: Optional[str] = None,
    lead_source: Optional[str] = None,
    search: Optional[str] = None,
) -> List[LeadResponse]:
    """List leads newest first. status filters on the displayed application_status."""
    q = _lead_query()
    if created_after:
        q = q.where(Lead.created_at >= _as_naive_utc(created_after))
    if created_before:
        q = q.where(Lead.created_at <= _as_naive_utc(created_before))
    if status_filter:
        value = status_filter.strip().upper()
        if value not in APPLICATION_STATUS_FILTERS:
            raise InvalidArgument(
                f"Invalid status '{status_filter}'. Allowed: {', '.join(APPLICATION_STATUS_FILTERS)}"
            )
        if value == INTERVIEW_SCHEDULED:
            q = q.where(Lead.decision_state.in_(OPEN_DECISION_STATES), Lead.meet_link.is_not(None))
        elif value in TERMINAL_DECISION_STATES:
            q = q.where(Lead.decision_state == value)
        else:
            q = q.where(Lead.decision_state == value, Lead.meet_link.is_(None))
    if lead_source:
        q = q.where(Lead.lead_source == lead_source.strip().lower())
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        q = q.where(
            or_(
                func.lower(Lead.name).like(pattern),
                func.lower(Lead.email).like(pattern),
                Lead.phone.like(pattern),
            )
        )
    q = q.order_by(Lead.created_at.desc(), Lead.id.desc())
    result = await db.execute(q)
    return [_lead_to_response(lead) for lead in result.scalars().all()]


async def email_exists(db: AsyncSession, email: str) -> bool:
    result = await db.execute(
        select(Lead.id).where(func.lower(Lead.email) == email.strip().lower())
    )
    return result.first() is not None


async def create_lead(
    db: AsyncSession,
    payload: LeadCreate,
    actor: Optional[CurrentUser] = None,
) -> LeadCreateResponse:
    """Create a lead with a PENDING payment record and a counsellor slot, in one transaction."""
    email = payload.email.strip().lower()
    if await email_exists(db, email):
        raise Conflict(f"A lead with email {email} already exists")

    counsellor: Optional[Counsellor] = None
    if payload.counsellor_id is not None:
        counsellor = await counsellor_service.get_counsellor(db, payload.counsellor_id)
        if not counsellor:
            raise NotFound(f"Counsellor {payload.counsellor_id} not found")
        counsellor_name = counsellor.name
        if not await counsellor_service.reserve_slot(db, counsellor.id):
            await db.rollback()
            raise Conflict(f"Counsellor {counsellor_name} is at full capacity")
    else:
        counsellor = await counsellor_service.reserve_least_utilized(db)

    lead = Lead(
        name=payload.name,
        email=email,
        phone=payload.phone,
        education=payload.education.strip() if payload.education else None,
        lead_source=payload.lead_source.value,
        decision_state=DecisionState.NEW.value,
        counsellor_id=counsellor.id if counsellor else None,
        payment_record=PaymentRecord(
            registration_status=PaymentStatus.PENDING.value,
            course_status=PaymentStatus.PENDING.value,
        ),
    )
    db.add(lead)
    try:
        await db.flush()
        await audit_service.log_audit(
            db,
            "lead",
            lead.id,
            "lead_created",
            to_status=DecisionState.NEW.value,
            actor=actor,
            remarks=f"source={lead.lead_source}",
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict(f"A lead with email {email} already exists")

    logger.info(
        "Created lead %s (counsellor=%s)", lead.id, counsellor.id if counsellor else None
    )
    await event_broker.publish_lead_event(
        lead.id, "created", {"application_status": DecisionState.NEW.value}
    )
    return LeadCreateResponse(
        student_id=lead.id,
        counselor_name=counsellor.name if counsellor else None,
        email=lead.email,
    )


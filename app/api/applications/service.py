"""
Application decision engine: NEW -> PENDING_REVIEW -> ACCEPTED | REJECTED.
Every transition is a compare-and-set UPDATE on decision_state, so of two
concurrent decisions exactly one wins and the other gets Conflict.
"""

import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.counsellors import service as counsellor_service
from app.api.courses import service as course_service
from app.api.leads import service as lead_service
from app.auth.schemas import CurrentUser
from app.core import audit_service
from app.core.config import settings
from app.core.enums import OPEN_DECISION_STATES, DecisionAction, DecisionState, PaymentStatus
from app.core.exceptions import Conflict, PreconditionFailed
from app.core.models import Course, Lead
from app.events.broker import event_broker

from .schemas import (
    AcceptDecisionResponse,
    ApplicationActionRequest,
    CoursePaymentDetails,
    RejectDecisionResponse,
    StartReviewRequest,
    StartReviewResponse,
)

logger = logging.getLogger(__name__)


def _require_registration_paid(lead: Lead) -> None:
    record = lead.payment_record
    if not record or record.registration_status != PaymentStatus.PAID.value:
        raise PreconditionFailed("Registration fee payment required before review")


async def start_review(
    db: AsyncSession,
    payload: StartReviewRequest,
    actor: Optional[CurrentUser] = None,
) -> StartReviewResponse:
    """Move a NEW lead to PENDING_REVIEW. Repeating it on a lead already under review is a no-op."""
    lead = await lead_service.get_lead_model(db, payload.student_id)
    _require_registration_paid(lead)
    if lead.is_terminal:
        raise Conflict(f"Application is already {lead.decision_state}")

    if lead.decision_state == DecisionState.NEW.value:
        result = await db.execute(
            update(Lead)
            .where(Lead.id == lead.id, Lead.decision_state == DecisionState.NEW.value)
            .values(decision_state=DecisionState.PENDING_REVIEW.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await audit_service.log_audit(
                db,
                "lead",
                lead.id,
                "review_started",
                from_status=DecisionState.NEW.value,
                to_status=DecisionState.PENDING_REVIEW.value,
                actor=actor,
                remarks=payload.remarks,
            )
            await db.commit()
            logger.info("Lead %s moved to PENDING_REVIEW", lead.id)
            await event_broker.publish_lead_event(
                lead.id, "review_started", {"decision_state": DecisionState.PENDING_REVIEW.value}
            )
        else:
            await db.rollback()

    await db.refresh(lead)
    if lead.is_terminal:
        raise Conflict(f"Application is already {lead.decision_state}")
    return StartReviewResponse(
        student_id=lead.id,
        decision_state=lead.decision_state,
        application_status=lead.application_status,
    )


async def submit_decision(
    db: AsyncSession,
    payload: ApplicationActionRequest,
    actor: Optional[CurrentUser] = None,
) -> Union[AcceptDecisionResponse, RejectDecisionResponse]:
    """
    Accept (binding a course) or reject an application.
    Checks in order: lead exists, registration PAID, course valid (ACCEPT), lead not terminal.
    """
    lead = await lead_service.get_lead_model(db, payload.student_id)
    _require_registration_paid(lead)

    course: Optional[Course] = None
    if payload.status == DecisionAction.ACCEPT:
        course = await course_service.get_active_course_or_400(db, payload.selected_course_id)

    if lead.is_terminal:
        logger.warning("Refused %s on lead %s: already %s", payload.status.value, lead.id, lead.decision_state)
        raise Conflict(f"Application is already {lead.decision_state}")

    from_state = lead.decision_state
    to_state = (
        DecisionState.ACCEPTED.value
        if payload.status == DecisionAction.ACCEPT
        else DecisionState.REJECTED.value
    )
    now = datetime.utcnow()
    values = {"decision_state": to_state, "decided_at": now}
    if course is not None:
        values["course_id"] = course.id

    result = await db.execute(
        update(Lead)
        .where(Lead.id == lead.id, Lead.decision_state.in_(OPEN_DECISION_STATES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.warning("Refused %s on lead %s: decided concurrently", payload.status.value, payload.student_id)
        raise Conflict("Application was already decided")

    # Terminal leads no longer count toward the counsellor's capacity
    counsellor_id = (
        await db.execute(select(Lead.counsellor_id).where(Lead.id == lead.id))
    ).scalar_one_or_none()
    await counsellor_service.release_slot(db, counsellor_id)

    await audit_service.log_audit(
        db,
        "lead",
        lead.id,
        "application_accepted" if course is not None else "application_rejected",
        from_status=from_state,
        to_status=to_state,
        actor=actor,
        remarks=payload.remarks or (f"course_id={course.id}" if course is not None else None),
    )
    await db.commit()
    logger.info("Lead %s %s", lead.id, to_state)
    await event_broker.publish_lead_event(
        lead.id,
        "decided",
        {"decision_state": to_state, "course_id": course.id if course is not None else None},
    )

    if course is not None:
        return AcceptDecisionResponse(
            student_id=lead.id,
            decision_state=to_state,
            course_fee=course.fee,
            payment_details=CoursePaymentDetails(
                course_id=course.id,
                course_name=course.name,
                amount=course.fee,
                currency=settings.currency,
            ),
            decided_at=now,
        )
    return RejectDecisionResponse(student_id=lead.id, decision_state=to_state, decided_at=now)

"""
Counsellor capacity tracker. assigned_count counts non-terminal leads and is only
changed by guarded UPDATEs, so it never exceeds max_capacity under concurrency.
"""

import logging
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core import audit_service
from app.core.enums import OPEN_DECISION_STATES
from app.core.exceptions import Conflict, NotFound
from app.core.models import Counsellor, Lead
from app.events.broker import event_broker

from .schemas import (
    AssignedLead,
    CounsellorAssign,
    CounsellorAssignResponse,
    CounsellorCreate,
    CounsellorResponse,
    CounsellorUpdate,
    CounsellorWithLeads,
)

logger = logging.getLogger(__name__)

# Candidates tried when the least-utilized counsellor fills up concurrently
AUTO_ASSIGN_ATTEMPTS = 3


def _counsellor_to_response(c: Counsellor) -> CounsellorResponse:
    utilization = round(c.assigned_count * 100.0 / c.max_capacity, 1) if c.max_capacity else 0.0
    return CounsellorResponse(
        id=c.id,
        name=c.name,
        email=c.email,
        phone=c.phone,
        max_capacity=c.max_capacity,
        assigned_count=c.assigned_count,
        available_slots=max(c.max_capacity - c.assigned_count, 0),
        utilization=utilization,
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


async def get_counsellor(db: AsyncSession, counsellor_id: int) -> Optional[Counsellor]:
    return (
        await db.execute(select(Counsellor).where(Counsellor.id == counsellor_id))
    ).scalar_one_or_none()


async def _get_counsellor_or_404(db: AsyncSession, counsellor_id: int) -> Counsellor:
    counsellor = await get_counsellor(db, counsellor_id)
    if not counsellor:
        raise NotFound("Counsellor not found")
    return counsellor


# ----- Capacity -----

async def reserve_slot(db: AsyncSession, counsellor_id: int) -> bool:
    """Atomic increment-with-limit. Returns False when the counsellor is full or missing."""
    result = await db.execute(
        update(Counsellor)
        .where(
            Counsellor.id == counsellor_id,
            Counsellor.assigned_count < Counsellor.max_capacity,
        )
        .values(assigned_count=Counsellor.assigned_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release_slot(db: AsyncSession, counsellor_id: Optional[int]) -> None:
    if counsellor_id is None:
        return
    await db.execute(
        update(Counsellor)
        .where(Counsellor.id == counsellor_id, Counsellor.assigned_count > 0)
        .values(assigned_count=Counsellor.assigned_count - 1)
        .execution_options(synchronize_session=False)
    )


async def reserve_least_utilized(db: AsyncSession) -> Optional[Counsellor]:
    """Reserve a slot on the least-utilized counsellor with spare capacity, if any."""
    q = (
        select(Counsellor)
        .where(Counsellor.assigned_count < Counsellor.max_capacity)
        .order_by(
            (Counsellor.assigned_count * 1.0 / Counsellor.max_capacity).asc(),
            Counsellor.assigned_count.asc(),
            Counsellor.id.asc(),
        )
        .limit(AUTO_ASSIGN_ATTEMPTS)
    )
    candidates = (await db.execute(q)).scalars().all()
    for candidate in candidates:
        if await reserve_slot(db, candidate.id):
            return candidate
    return None


# ----- CRUD -----

async def list_counsellors(db: AsyncSession) -> List[CounsellorResponse]:
    result = await db.execute(select(Counsellor).order_by(Counsellor.name.asc(), Counsellor.id.asc()))
    return [_counsellor_to_response(c) for c in result.scalars().all()]


async def get_counsellor_with_leads(db: AsyncSession, counsellor_id: int) -> CounsellorWithLeads:
    counsellor = await _get_counsellor_or_404(db, counsellor_id)
    result = await db.execute(
        select(Lead)
        .where(Lead.counsellor_id == counsellor_id)
        .order_by(Lead.created_at.desc(), Lead.id.desc())
    )
    leads = [
        AssignedLead(
            student_id=lead.id,
            name=lead.name,
            email=lead.email,
            phone=lead.phone,
            application_status=lead.application_status,
            created_at=lead.created_at,
        )
        for lead in result.scalars().all()
    ]
    return CounsellorWithLeads(counsellor=_counsellor_to_response(counsellor), leads=leads)


async def create_counsellor(db: AsyncSession, payload: CounsellorCreate) -> CounsellorResponse:
    counsellor = Counsellor(
        name=payload.name.strip(),
        email=payload.email.strip().lower(),
        phone=payload.phone.strip() if payload.phone else None,
        max_capacity=payload.max_capacity,
        assigned_count=0,
    )
    db.add(counsellor)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("A counsellor with this email already exists")
    await db.refresh(counsellor)
    logger.info("Created counsellor %s", counsellor.id)
    return _counsellor_to_response(counsellor)


async def update_counsellor(db: AsyncSession, payload: CounsellorUpdate) -> CounsellorResponse:
    counsellor = await _get_counsellor_or_404(db, payload.id)
    data = payload.model_dump(exclude_unset=True, exclude={"id"})

    if data.get("max_capacity") is not None:
        # Guarded so a concurrent reservation cannot slip above the new limit
        new_capacity = data.pop("max_capacity")
        result = await db.execute(
            update(Counsellor)
            .where(Counsellor.id == counsellor.id, Counsellor.assigned_count <= new_capacity)
            .values(max_capacity=new_capacity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise Conflict("max_capacity cannot be lower than the number of assigned leads")
    else:
        data.pop("max_capacity", None)

    if data.get("name") is not None:
        counsellor.name = data["name"].strip()
    if data.get("email") is not None:
        counsellor.email = data["email"].strip().lower()
    if "phone" in data:
        counsellor.phone = data["phone"].strip() if data["phone"] else None

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("A counsellor with this email already exists")
    await db.refresh(counsellor)
    logger.info("Updated counsellor %s", counsellor.id)
    return _counsellor_to_response(counsellor)


async def delete_counsellor(db: AsyncSession, counsellor_id: int, cascade: bool = False) -> None:
    """Delete a counsellor. Refused while it has active leads unless cascade unassigns them."""
    await _get_counsellor_or_404(db, counsellor_id)
    active = (
        await db.execute(
            select(func.count(Lead.id)).where(
                Lead.counsellor_id == counsellor_id,
                Lead.decision_state.in_(OPEN_DECISION_STATES),
            )
        )
    ).scalar_one()
    if active and not cascade:
        raise Conflict(
            f"Counsellor has {active} active lead(s); unassign them first or delete with cascade=true"
        )

    unassigned = await db.execute(
        select(Lead.id).where(Lead.counsellor_id == counsellor_id)
    )
    lead_ids = list(unassigned.scalars().all())
    await db.execute(
        update(Lead)
        .where(Lead.counsellor_id == counsellor_id)
        .values(counsellor_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(delete(Counsellor).where(Counsellor.id == counsellor_id))
    await db.commit()
    logger.info("Deleted counsellor %s, unassigned %d lead(s)", counsellor_id, len(lead_ids))
    for lead_id in lead_ids:
        await event_broker.publish_lead_event(lead_id, "counsellor_changed", {"counsellor_id": None})


async def assign_counsellor(
    db: AsyncSession,
    payload: CounsellorAssign,
    actor: Optional[CurrentUser] = None,
) -> CounsellorAssignResponse:
    lead = (await db.execute(select(Lead).where(Lead.id == payload.student_id))).scalar_one_or_none()
    if not lead:
        raise NotFound("Lead not found")
    counsellor = await _get_counsellor_or_404(db, payload.counsellor_id)
    if lead.is_terminal:
        raise Conflict(f"Lead is {lead.decision_state}; counsellor cannot be changed")

    previous_id = lead.counsellor_id
    if previous_id == counsellor.id:
        return CounsellorAssignResponse(
            student_id=lead.id, counsellor_id=counsellor.id, counselor_name=counsellor.name
        )

    if not await reserve_slot(db, counsellor.id):
        await db.rollback()
        raise Conflict("Counsellor is at full capacity")

    # The lead may have been decided or reassigned since it was read
    if previous_id is None:
        still_previous = Lead.counsellor_id.is_(None)
    else:
        still_previous = Lead.counsellor_id == previous_id
    result = await db.execute(
        update(Lead)
        .where(
            Lead.id == lead.id,
            Lead.decision_state.in_(OPEN_DECISION_STATES),
            still_previous,
        )
        .values(counsellor_id=counsellor.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Lead was decided or reassigned concurrently; retry the assignment")
    await release_slot(db, previous_id)

    await audit_service.log_audit(
        db,
        "lead",
        lead.id,
        "counsellor_assigned",
        from_status=str(previous_id) if previous_id else None,
        to_status=str(counsellor.id),
        actor=actor,
    )
    await db.commit()
    logger.info("Assigned lead %s to counsellor %s (was %s)", lead.id, counsellor.id, previous_id)
    await event_broker.publish_lead_event(
        lead.id, "counsellor_changed", {"counsellor_id": counsellor.id, "counselor_name": counsellor.name}
    )
    return CounsellorAssignResponse(
        student_id=lead.id, counsellor_id=counsellor.id, counselor_name=counsellor.name
    )

from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import DecisionState, PaymentStatus
from app.core.models import Lead, PaymentRecord

from .schemas import DailyLeadCount, DashboardStats

TREND_DAYS = 7


async def _count(db: AsyncSession, model_column, *conditions) -> int:
    q = select(func.count(model_column))
    if conditions:
        q = q.where(*conditions)
    return (await db.execute(q)).scalar_one()


async def get_stats(db: AsyncSession, now: Optional[datetime] = None) -> DashboardStats:
    """Headline counts for the admissions dashboard. Times are UTC."""
    now = now or datetime.utcnow()
    today = now.date()
    month_start = datetime(now.year, now.month, 1)
    trend_start = datetime.combine(today - timedelta(days=TREND_DAYS - 1), datetime.min.time())

    total = await _count(db, Lead.id)
    accepted = await _count(db, Lead.id, Lead.decision_state == DecisionState.ACCEPTED.value)
    rejected = await _count(db, Lead.id, Lead.decision_state == DecisionState.REJECTED.value)
    pending_review = await _count(db, Lead.id, Lead.decision_state == DecisionState.PENDING_REVIEW.value)
    interviews = await _count(db, Lead.id, Lead.meet_link.is_not(None))
    this_month = await _count(db, Lead.id, Lead.created_at >= month_start)
    registration_paid = await _count(
        db, PaymentRecord.id, PaymentRecord.registration_status == PaymentStatus.PAID.value
    )
    course_fee_paid = await _count(
        db, PaymentRecord.id, PaymentRecord.course_status == PaymentStatus.PAID.value
    )

    # Bucketed here so the query stays portable across backends
    recent = await db.execute(select(Lead.created_at).where(Lead.created_at >= trend_start))
    per_day = Counter(created_at.date() for created_at in recent.scalars().all())
    trend = [
        DailyLeadCount(date=day, count=per_day.get(day, 0))
        for day in (today - timedelta(days=offset) for offset in range(TREND_DAYS - 1, -1, -1))
    ]

    return DashboardStats(
        total_leads=total,
        accepted=accepted,
        rejected=rejected,
        pending_review=pending_review,
        interviews_scheduled=interviews,
        leads_this_month=this_month,
        conversion_rate=round(accepted * 100.0 / total, 1) if total else 0.0,
        registration_paid=registration_paid,
        course_fee_paid=course_fee_paid,
        leads_last_7_days=trend,
    )

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dashboard.service import get_stats


@pytest.mark.asyncio
async def test_dashboard_stats(workflow, client: AsyncClient, admin_headers) -> None:
    course = await workflow.create_course()
    accepted = await workflow.create_lead(name="Asha", email="asha@x.com")
    rejected = await workflow.create_lead(name="Ravi", email="ravi@example.com")
    reviewing = await workflow.create_lead(name="Meera", email="meera@example.com")
    for lead in (accepted, rejected, reviewing):
        await workflow.pay(lead["student_id"])

    await workflow.decide(accepted["student_id"], "ACCEPT", course["id"])
    await workflow.decide(rejected["student_id"], "REJECT")
    await client.post("/start-review", json={"student_id": reviewing["student_id"]}, headers=admin_headers)
    await client.post("/schedule-meet", json={"student_id": reviewing["student_id"]}, headers=admin_headers)

    response = await client.get("/dashboard/stats", headers=admin_headers)
    assert response.status_code == 200
    stats = response.json()["data"]
    assert stats["total_leads"] == 3
    assert stats["accepted"] == 1
    assert stats["rejected"] == 1
    assert stats["pending_review"] == 1
    assert stats["interviews_scheduled"] == 1
    assert stats["registration_paid"] == 3
    assert stats["course_fee_paid"] == 0
    assert stats["conversion_rate"] == 33.3
    assert len(stats["leads_last_7_days"]) == 7
    assert stats["leads_last_7_days"][-1] == {"date": datetime.utcnow().date().isoformat(), "count": 3}


@pytest.mark.asyncio
async def test_dashboard_empty(db_session: AsyncSession) -> None:
    stats = await get_stats(db_session)
    assert stats.total_leads == 0
    assert stats.conversion_rate == 0.0
    assert [d.count for d in stats.leads_last_7_days] == [0] * 7


@pytest.mark.asyncio
async def test_dashboard_trend_window(workflow, db_session: AsyncSession) -> None:
    await workflow.create_lead()

    stats = await get_stats(db_session, now=datetime.utcnow() + timedelta(days=10))
    assert stats.total_leads == 1
    assert sum(d.count for d in stats.leads_last_7_days) == 0

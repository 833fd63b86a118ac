from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from app.api.courses import service as course_service
from app.core.exceptions import Conflict
from app.core.models import Course


@pytest.mark.asyncio
async def test_create_and_list_courses(workflow, client: AsyncClient, admin_headers) -> None:
    course = await workflow.create_course(name="  Data Science ", fee="45000", duration="6 months")
    assert course["name"] == "Data Science"
    assert Decimal(course["fee"]) == Decimal("45000")
    assert course["enrolled"] == 0
    assert course["is_active"] is True

    await workflow.create_course(name="Archived Course", fee="100", is_active=False)

    response = await client.get("/courses", headers=admin_headers)
    assert [c["name"] for c in response.json()["data"]] == ["Data Science"]

    response = await client.get("/courses", params={"active_only": "false"}, headers=admin_headers)
    assert response.json()["count"] == 2


@pytest.mark.asyncio
async def test_course_validation(client: AsyncClient, admin_headers) -> None:
    response = await client.post("/create-course", json={"name": "   ", "fee": "10"}, headers=admin_headers)
    assert response.status_code == 422

    response = await client.post("/create-course", json={"name": "Negative", "fee": "-1"}, headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_course(workflow, client: AsyncClient, admin_headers) -> None:
    course = await workflow.create_course(fee="45000")

    response = await client.put(
        "/update-course",
        json={"id": course["id"], "fee": "47000.50", "description": "Python, statistics and ML"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert Decimal(data["fee"]) == Decimal("47000.50")
    assert data["description"] == "Python, statistics and ML"
    assert data["name"] == "Data Science"

    response = await client.put("/update-course", json={"id": 999, "fee": "1"}, headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_course(workflow, client: AsyncClient, admin_headers) -> None:
    course = await workflow.create_course()

    response = await client.delete("/delete-course", params={"id": course["id"]}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Course deleted"

    response = await client.delete("/delete-course", params={"id": course["id"]}, headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_course_frozen_once_enrolled(workflow, client: AsyncClient, admin_headers) -> None:
    course = await workflow.create_course(fee="45000")
    lead = await workflow.create_lead()
    await workflow.pay(lead["student_id"])
    decided = await workflow.decide(lead["student_id"], "ACCEPT", course["id"])
    assert decided.status_code == 200

    # Bound to an accepted lead but not yet paid: still editable, not deletable
    response = await client.delete("/delete-course", params={"id": course["id"]}, headers=admin_headers)
    assert response.status_code == 409

    await workflow.pay(lead["student_id"], "COURSE_FEE", course["id"])
    assert (await workflow.get_course(course["id"]))["enrolled"] == 1

    response = await client.put(
        "/update-course", json={"id": course["id"], "fee": "1"}, headers=admin_headers
    )
    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "CONFLICT"

    response = await client.delete("/delete-course", params={"id": course["id"]}, headers=admin_headers)
    assert response.status_code == 409

    assert Decimal((await workflow.get_course(course["id"]))["fee"]) == Decimal("45000")


@pytest.mark.asyncio
async def test_delete_course_rechecks_enrollment(workflow, db_session, monkeypatch) -> None:
    created = await workflow.create_course()
    await db_session.execute(update(Course).where(Course.id == created["id"]).values(enrolled=1))
    await db_session.commit()

    # Enrollment lands after the course was read
    async def stale_course(db, course_id, active_only=False):
        return Course(id=course_id, name=created["name"], fee=Decimal(created["fee"]), enrolled=0, is_active=True)

    monkeypatch.setattr(course_service, "get_course", stale_course)
    with pytest.raises(Conflict):
        await course_service.delete_course(db_session, created["id"])

    monkeypatch.undo()
    assert (await workflow.get_course(created["id"]))["enrolled"] == 1

import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.core.config import settings
from app.core.models import AuditLog


def _webhook(gateway, event: str, order_id: str, payment_id: str = "pay_hook_1"):
    body = json.dumps(
        {
            "event": event,
            "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id}}},
        }
    ).encode()
    signature = hmac.new(gateway.webhook_secret.encode(), body, hashlib.sha256).hexdigest()
    return body, signature


@pytest.mark.asyncio
async def test_registration_to_course_fee_flow(workflow) -> None:
    course = await workflow.create_course(fee="45000.00")
    lead = await workflow.create_lead(name="Asha", email="asha@x.com", phone="9999999999")
    student_id = lead["student_id"]
    assert (await workflow.get_lead(student_id))["registration_fee_status"] == "PENDING"

    response = await workflow.decide(student_id, "ACCEPT", course["id"])
    assert response.status_code == 412
    assert response.json()["detail"]["error"] == "PRECONDITION_FAILED"

    await workflow.pay(student_id)
    assert (await workflow.get_lead(student_id))["registration_fee_status"] == "PAID"

    response = await workflow.decide(student_id, "ACCEPT", course["id"])
    assert response.status_code == 200
    assert response.json()["message"] == "Application accepted. Proceed to course fee payment"
    lead_view = await workflow.get_lead(student_id)
    assert lead_view["application_status"] == "ACCEPTED"
    assert lead_view["course_id"] == course["id"]

    response = await workflow.initiate(student_id, "COURSE_FEE", course["id"])
    assert response.status_code == 200
    order = response.json()["data"]
    assert Decimal(order["amount"]) == Decimal("45000.00")
    assert order["amount_subunits"] == 4500000
    assert order["currency"] == settings.currency

    response = await workflow.decide(student_id, "REJECT")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_course_fee_for_unknown_course(workflow) -> None:
    lead = await workflow.create_lead()
    response = await workflow.initiate(lead["student_id"], "COURSE_FEE", 99)
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "INVALID_ARGUMENT"


@pytest.mark.asyncio
async def test_registration_amount_is_server_side(workflow) -> None:
    lead = await workflow.create_lead()
    response = await workflow.initiate(lead["student_id"], "registration", amount="1.00")
    assert response.status_code == 200
    data = response.json()["data"]
    assert Decimal(data["amount"]) == settings.registration_fee
    assert workflow.gateway.orders[-1].amount_subunits == int(settings.registration_fee * 100)


@pytest.mark.asyncio
async def test_confirmation_is_idempotent(workflow) -> None:
    course = await workflow.create_course(fee="45000.00")
    lead = await workflow.create_lead()
    student_id = lead["student_id"]
    await workflow.pay(student_id)
    await workflow.decide(student_id, "ACCEPT", course["id"])

    order_id = (await workflow.initiate(student_id, "COURSE_FEE", course["id"])).json()["data"]["order_id"]
    first = await workflow.verify(order_id, payment_id="pay_course_1")
    second = await workflow.verify(order_id, payment_id="pay_course_1")
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["data"]["status"] == "PAID"
    assert second.json()["data"]["paid_at"] == first.json()["data"]["paid_at"]

    assert (await workflow.get_course(course["id"]))["enrolled"] == 1
    assert (await workflow.get_lead(student_id))["course_fee_status"] == "PAID"

    response = await workflow.initiate(student_id, "COURSE_FEE", course["id"])
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_signature_mismatch_changes_nothing(workflow) -> None:
    lead = await workflow.create_lead()
    order_id = (await workflow.initiate(lead["student_id"])).json()["data"]["order_id"]

    response = await workflow.verify(order_id, payment_id="pay_1", signature="forged")
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "VERIFICATION_FAILED"
    assert (await workflow.get_lead(lead["student_id"]))["registration_fee_status"] == "PENDING"


@pytest.mark.asyncio
async def test_verify_unknown_order(workflow) -> None:
    response = await workflow.verify("order_missing")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_registration_cannot_be_paid_twice(workflow) -> None:
    lead = await workflow.create_lead()
    await workflow.pay(lead["student_id"])
    response = await workflow.initiate(lead["student_id"])
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_course_fee_requires_acceptance(workflow) -> None:
    course = await workflow.create_course()
    lead = await workflow.create_lead()

    response = await workflow.initiate(lead["student_id"], "COURSE_FEE", course["id"])
    assert response.status_code == 412

    await workflow.pay(lead["student_id"])
    response = await workflow.initiate(lead["student_id"], "COURSE_FEE", course["id"])
    assert response.status_code == 412
    assert "accepted" in response.json()["detail"]["message"]


@pytest.mark.asyncio
async def test_course_fee_must_match_selected_course(workflow) -> None:
    chosen = await workflow.create_course(name="Data Science")
    other = await workflow.create_course(name="Web Development", fee="30000")
    lead = await workflow.create_lead()
    await workflow.pay(lead["student_id"])
    await workflow.decide(lead["student_id"], "ACCEPT", chosen["id"])

    response = await workflow.initiate(lead["student_id"], "COURSE_FEE", other["id"])
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_rejected_lead_cannot_pay(workflow) -> None:
    course = await workflow.create_course()
    lead = await workflow.create_lead()
    await workflow.pay(lead["student_id"])
    await workflow.decide(lead["student_id"], "REJECT")

    response = await workflow.initiate(lead["student_id"], "COURSE_FEE", course["id"])
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_gateway_unavailable_is_retryable(workflow) -> None:
    lead = await workflow.create_lead()
    workflow.gateway.unavailable = True

    response = await workflow.initiate(lead["student_id"])
    assert response.status_code == 503
    assert response.json()["detail"]["retryable"] is True

    workflow.gateway.unavailable = False
    response = await workflow.initiate(lead["student_id"])
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_payment_status(workflow, client: AsyncClient, admin_headers) -> None:
    lead = await workflow.create_lead()
    response = await client.get("/payment-status", params={"student_id": lead["student_id"]}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["data"] == {
        "student_id": lead["student_id"],
        "registration_status": "PENDING",
        "course_status": "PENDING",
        "course_id": None,
    }

    response = await client.get("/payment-status", params={"student_id": 404}, headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_webhook_captured_confirms_payment(workflow, client: AsyncClient) -> None:
    lead = await workflow.create_lead()
    order_id = (await workflow.initiate(lead["student_id"])).json()["data"]["order_id"]

    body, signature = _webhook(workflow.gateway, "payment.captured", order_id)
    response = await client.post(
        "/payment-webhook", content=body, headers={"X-Razorpay-Signature": signature}
    )
    assert response.status_code == 200
    assert response.json() == {"status": "processed", "event": "payment.captured"}
    assert (await workflow.get_lead(lead["student_id"]))["registration_fee_status"] == "PAID"

    # The checkout callback arriving afterwards is a no-op
    response = await workflow.verify(order_id, payment_id="pay_hook_1")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "PAID"


@pytest.mark.asyncio
async def test_webhook_failed_then_retry(workflow, client: AsyncClient) -> None:
    lead = await workflow.create_lead()
    order_id = (await workflow.initiate(lead["student_id"])).json()["data"]["order_id"]

    body, signature = _webhook(workflow.gateway, "payment.failed", order_id)
    response = await client.post(
        "/payment-webhook", content=body, headers={"X-Razorpay-Signature": signature}
    )
    assert response.status_code == 200
    assert (await workflow.get_lead(lead["student_id"]))["registration_fee_status"] == "FAILED"

    await workflow.pay(lead["student_id"])
    assert (await workflow.get_lead(lead["student_id"]))["registration_fee_status"] == "PAID"


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(workflow, client: AsyncClient) -> None:
    lead = await workflow.create_lead()
    order_id = (await workflow.initiate(lead["student_id"])).json()["data"]["order_id"]
    body, _ = _webhook(workflow.gateway, "payment.captured", order_id)

    response = await client.post(
        "/payment-webhook", content=body, headers={"X-Razorpay-Signature": "0" * 64}
    )
    assert response.status_code == 400
    assert (await workflow.get_lead(lead["student_id"]))["registration_fee_status"] == "PENDING"


@pytest.mark.asyncio
async def test_webhook_ignores_unknown_events(workflow, client: AsyncClient) -> None:
    body, signature = _webhook(workflow.gateway, "refund.created", "order_whatever")
    response = await client.post(
        "/payment-webhook", content=body, headers={"X-Razorpay-Signature": signature}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"

    body, signature = _webhook(workflow.gateway, "payment.captured", "order_unknown")
    response = await client.post(
        "/payment-webhook", content=body, headers={"X-Razorpay-Signature": signature}
    )
    assert response.json()["status"] == "ignored"


@pytest.mark.asyncio
async def test_payment_steps_are_audited(workflow, session_factory) -> None:
    lead = await workflow.create_lead()
    await workflow.pay(lead["student_id"])

    async with session_factory() as db:
        result = await db.execute(
            select(AuditLog).where(AuditLog.entity_id == lead["student_id"]).order_by(AuditLog.id)
        )
        entries = result.scalars().all()
    assert [e.action for e in entries] == ["lead_created", "payment_initiated", "payment_confirmed"]
    assert {e.performed_by_role for e in entries} == {"ADMIN"}
    assert entries[-1].to_status == "PAID"


@pytest.mark.asyncio
async def test_webhook_rejects_malformed_bodies(workflow, client: AsyncClient) -> None:
    secret = workflow.gateway.webhook_secret.encode()
    bodies = [
        json.dumps([{"event": "payment.captured"}]).encode(),
        json.dumps({"event": "payment.captured", "payload": {"payment": "pay_1"}}).encode(),
        json.dumps({"event": "payment.captured", "payload": {"payment": None}}).encode(),
    ]
    for body in bodies:
        signature = hmac.new(secret, body, hashlib.sha256).hexdigest()
        response = await client.post(
            "/payment-webhook", content=body, headers={"X-Razorpay-Signature": signature}
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_ARGUMENT"

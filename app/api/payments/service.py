"""
Payment ledger. Amounts are computed here, never taken from the caller.
Only gateway confirmation moves a fee to PAID, and it does so exactly once per order.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.courses import service as course_service
from app.api.leads import service as lead_service
from app.auth.schemas import CurrentUser
from app.core import audit_service
from app.core.config import settings
from app.core.enums import DecisionState, PaymentStatus, PaymentType, TransactionStatus
from app.core.exceptions import (
    Conflict,
    InvalidArgument,
    NotFound,
    PreconditionFailed,
    VerificationFailed,
)
from app.core.models import PaymentRecord, PaymentTransaction
from app.events.broker import event_broker

from .gateway import RazorpayGateway, to_subunits
from .schemas import (
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentStatusResponse,
    PaymentVerifyResponse,
    WebhookAck,
)

logger = logging.getLogger(__name__)

WEBHOOK_PAID_EVENTS = ("payment.captured", "order.paid")
WEBHOOK_FAILED_EVENTS = ("payment.failed",)


async def _get_transaction(db: AsyncSession, order_id: str) -> Optional[PaymentTransaction]:
    return (
        await db.execute(select(PaymentTransaction).where(PaymentTransaction.order_id == order_id))
    ).scalar_one_or_none()


# ----- Initiate -----

async def initiate_payment(
    db: AsyncSession,
    gateway: RazorpayGateway,
    payload: PaymentInitiateRequest,
    actor: Optional[CurrentUser] = None,
) -> PaymentInitiateResponse:
    """Create a gateway order for the registration fee or the accepted course's fee."""
    lead = await lead_service.get_lead_model(db, payload.student_id)
    record: PaymentRecord = lead.payment_record
    if lead.decision_state == DecisionState.REJECTED.value:
        raise Conflict("Application is rejected; no further payments are accepted")

    if payload.payment_type == PaymentType.REGISTRATION:
        if record.registration_status == PaymentStatus.PAID.value:
            raise Conflict("Registration fee is already paid")
        amount = settings.registration_fee
        course_id = None
    else:
        course = await course_service.get_active_course_or_400(db, payload.course_id)
        if record.registration_status != PaymentStatus.PAID.value:
            raise PreconditionFailed("Registration fee must be paid before the course fee")
        if lead.decision_state != DecisionState.ACCEPTED.value:
            raise PreconditionFailed("Course fee can only be paid after the application is accepted")
        if lead.course_id != course.id:
            raise InvalidArgument(
                f"Course {course.id} is not the course selected on acceptance (course {lead.course_id})"
            )
        if record.course_status == PaymentStatus.PAID.value:
            raise Conflict("Course fee is already paid")
        amount = course.fee
        course_id = course.id

    if payload.amount is not None and payload.amount != amount:
        logger.warning(
            "Ignoring caller amount %s for lead %s %s; charging %s",
            payload.amount, lead.id, payload.payment_type.value, amount,
        )

    order = await gateway.create_order(
        to_subunits(amount),
        settings.currency,
        receipt=f"lead-{lead.id}-{payload.payment_type.value.lower()}",
        notes={"student_id": str(lead.id), "payment_type": payload.payment_type.value},
    )

    db.add(
        PaymentTransaction(
            lead_id=lead.id,
            payment_type=payload.payment_type.value,
            course_id=course_id,
            amount=amount,
            currency=order.currency,
            order_id=order.order_id,
            status=TransactionStatus.CREATED.value,
        )
    )
    if payload.payment_type == PaymentType.REGISTRATION:
        record.registration_amount = amount
        if record.registration_status == PaymentStatus.FAILED.value:
            record.registration_status = PaymentStatus.PENDING.value
    else:
        record.course_id = course_id
        record.course_amount = amount
        if record.course_status == PaymentStatus.FAILED.value:
            record.course_status = PaymentStatus.PENDING.value
    await audit_service.log_audit(
        db,
        "payment",
        lead.id,
        "payment_initiated",
        to_status=TransactionStatus.CREATED.value,
        actor=actor,
        remarks=f"{payload.payment_type.value} order {order.order_id} amount {amount}",
    )
    await db.commit()
    logger.info(
        "Initiated %s payment for lead %s: order %s, %s %s",
        payload.payment_type.value, lead.id, order.order_id, amount, order.currency,
    )
    return PaymentInitiateResponse(
        order_id=order.order_id,
        amount=amount,
        amount_subunits=order.amount_subunits,
        currency=order.currency,
        payment_type=payload.payment_type,
        key_id=gateway.key_id,
    )


# ----- Confirm -----

async def _apply_confirmation(
    db: AsyncSession,
    txn: PaymentTransaction,
    gateway_payment_id: Optional[str],
    actor: Optional[CurrentUser] = None,
) -> bool:
    """
    Mark the transaction and the matching fee PAID. Returns False when another
    confirmation already did so, in which case nothing changes.
    """
    now = datetime.utcnow()
    claimed = await db.execute(
        update(PaymentTransaction)
        .where(
            PaymentTransaction.id == txn.id,
            PaymentTransaction.status != TransactionStatus.PAID.value,
        )
        .values(
            status=TransactionStatus.PAID.value,
            gateway_payment_id=gateway_payment_id,
            paid_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        return False

    if txn.payment_type == PaymentType.REGISTRATION.value:
        await db.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.lead_id == txn.lead_id,
                PaymentRecord.registration_status != PaymentStatus.PAID.value,
            )
            .values(registration_status=PaymentStatus.PAID.value, registration_paid_at=now)
            .execution_options(synchronize_session=False)
        )
    else:
        # course_status may only become PAID while registration is PAID
        result = await db.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.lead_id == txn.lead_id,
                PaymentRecord.registration_status == PaymentStatus.PAID.value,
                PaymentRecord.course_status != PaymentStatus.PAID.value,
            )
            .values(
                course_status=PaymentStatus.PAID.value,
                course_paid_at=now,
                course_id=txn.course_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await course_service.increment_enrolled(db, txn.course_id)
        else:
            registration_paid = (
                await db.execute(
                    select(PaymentRecord.registration_status).where(PaymentRecord.lead_id == txn.lead_id)
                )
            ).scalar_one_or_none() == PaymentStatus.PAID.value
            if not registration_paid:
                await db.rollback()
                raise PreconditionFailed("Registration fee must be paid before the course fee")
            logger.warning("Course fee for lead %s was already paid by another order", txn.lead_id)

    await audit_service.log_audit(
        db,
        "payment",
        txn.lead_id,
        "payment_confirmed",
        from_status=TransactionStatus.CREATED.value,
        to_status=TransactionStatus.PAID.value,
        actor=actor,
        remarks=f"{txn.payment_type} order {txn.order_id} payment {gateway_payment_id}",
    )
    await db.commit()
    logger.info("Confirmed %s payment for lead %s (order %s)", txn.payment_type, txn.lead_id, txn.order_id)
    await event_broker.publish_lead_event(
        txn.lead_id,
        "payment_confirmed",
        {"payment_type": txn.payment_type, "order_id": txn.order_id, "status": PaymentStatus.PAID.value},
    )
    return True


async def confirm_payment(
    db: AsyncSession,
    gateway: RazorpayGateway,
    order_id: str,
    payment_id: str,
    signature: str,
    actor: Optional[CurrentUser] = None,
) -> PaymentVerifyResponse:
    """Verify the checkout signature and confirm the order. Idempotent per order."""
    txn = await _get_transaction(db, order_id)
    if not txn:
        raise NotFound(f"Order {order_id} not found")
    if not gateway.verify_payment_signature(order_id, payment_id, signature):
        logger.warning("Signature mismatch for order %s (lead %s)", order_id, txn.lead_id)
        raise VerificationFailed("Payment signature verification failed")

    lead_id, payment_type = txn.lead_id, txn.payment_type
    applied = await _apply_confirmation(db, txn, payment_id, actor=actor)
    if not applied:
        logger.info("Order %s already confirmed; no changes", order_id)
    await db.refresh(txn)
    return PaymentVerifyResponse(
        status=txn.status,
        order_id=order_id,
        student_id=lead_id,
        payment_type=payment_type,
        paid_at=txn.paid_at,
    )


# ----- Webhook -----

async def _mark_failed(db: AsyncSession, txn: PaymentTransaction, reason: Optional[str]) -> None:
    result = await db.execute(
        update(PaymentTransaction)
        .where(
            PaymentTransaction.id == txn.id,
            PaymentTransaction.status == TransactionStatus.CREATED.value,
        )
        .values(status=TransactionStatus.FAILED.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return
    if txn.payment_type == PaymentType.REGISTRATION.value:
        record_update = (
            update(PaymentRecord)
            .where(
                PaymentRecord.lead_id == txn.lead_id,
                PaymentRecord.registration_status == PaymentStatus.PENDING.value,
            )
            .values(registration_status=PaymentStatus.FAILED.value)
        )
    else:
        record_update = (
            update(PaymentRecord)
            .where(
                PaymentRecord.lead_id == txn.lead_id,
                PaymentRecord.course_status == PaymentStatus.PENDING.value,
            )
            .values(course_status=PaymentStatus.FAILED.value)
        )
    await db.execute(record_update.execution_options(synchronize_session=False))
    await audit_service.log_audit(
        db,
        "payment",
        txn.lead_id,
        "payment_failed",
        from_status=TransactionStatus.CREATED.value,
        to_status=TransactionStatus.FAILED.value,
        remarks=reason,
    )
    await db.commit()
    logger.info("Marked %s order %s for lead %s as failed", txn.payment_type, txn.order_id, txn.lead_id)
    await event_broker.publish_lead_event(
        txn.lead_id,
        "payment_failed",
        {"payment_type": txn.payment_type, "order_id": txn.order_id, "status": PaymentStatus.FAILED.value},
    )


def _webhook_object(value: Any) -> Dict[str, Any]:
    """Nested webhook sections may be missing or null."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidArgument("Webhook payload is malformed")
    return value


async def handle_webhook(
    db: AsyncSession,
    gateway: RazorpayGateway,
    body: bytes,
    signature: Optional[str],
) -> WebhookAck:
    """Process a gateway callback. Unknown events and orders are acknowledged and ignored."""
    if not gateway.verify_webhook_signature(body, signature):
        logger.warning("Webhook signature mismatch")
        raise VerificationFailed("Webhook signature verification failed")
    try:
        event = json.loads(body)
    except ValueError as e:
        raise InvalidArgument("Webhook body is not valid JSON") from e
    if not isinstance(event, dict):
        raise InvalidArgument("Webhook body must be a JSON object")

    event_name = event.get("event")
    if not isinstance(event_name, str) or event_name not in WEBHOOK_PAID_EVENTS + WEBHOOK_FAILED_EVENTS:
        logger.info("Ignoring webhook event %s", event_name)
        return WebhookAck(status="ignored", event=event_name if isinstance(event_name, str) else None)

    payload = _webhook_object(event.get("payload"))
    payment = _webhook_object(_webhook_object(payload.get("payment")).get("entity"))
    order = _webhook_object(_webhook_object(payload.get("order")).get("entity"))
    order_id = payment.get("order_id") or order.get("id")
    if not isinstance(order_id, str) or not order_id:
        raise InvalidArgument("Webhook payload has no order id")
    txn = await _get_transaction(db, order_id)
    if not txn:
        logger.warning("Webhook %s for unknown order %s", event_name, order_id)
        return WebhookAck(status="ignored", event=event_name)

    if event_name in WEBHOOK_PAID_EVENTS:
        try:
            await _apply_confirmation(db, txn, payment.get("id"))
        except PreconditionFailed:
            logger.warning("Webhook %s for order %s arrived before registration was paid", event_name, order_id)
            return WebhookAck(status="ignored", event=event_name)
    else:
        await _mark_failed(db, txn, payment.get("error_description"))
    return WebhookAck(status="processed", event=event_name)


# ----- Status -----

async def get_payment_status(db: AsyncSession, lead_id: int) -> PaymentStatusResponse:
    lead = await lead_service.get_lead_model(db, lead_id)
    record = lead.payment_record
    return PaymentStatusResponse(
        student_id=lead.id,
        registration_status=record.registration_status if record else PaymentStatus.PENDING.value,
        course_status=record.course_status if record else PaymentStatus.PENDING.value,
        course_id=record.course_id if record else None,
    )

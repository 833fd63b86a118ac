from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.schemas import ApiResponse
from app.db.session import get_db

from .gateway import RazorpayGateway, get_payment_gateway
from .schemas import (
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentStatusResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    WebhookAck,
)
from . import service

router = APIRouter(tags=["payments"])


@router.post(
    "/initiate-payment",
    response_model=ApiResponse[PaymentInitiateResponse],
    dependencies=[Depends(check_permission("payments", "create"))],
)
async def initiate_payment(
    payload: PaymentInitiateRequest,
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[PaymentInitiateResponse]:
    """Create a gateway order. The amount is computed server-side; any amount sent is ignored."""
    try:
        order = await service.initiate_payment(db, gateway, payload, actor=current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[PaymentInitiateResponse](message="Payment initiated", data=order)


@router.post(
    "/verify-payment",
    response_model=ApiResponse[PaymentVerifyResponse],
    dependencies=[Depends(check_permission("payments", "update"))],
)
async def verify_payment(
    payload: PaymentVerifyRequest,
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[PaymentVerifyResponse]:
    """Confirm a payment with the gateway signature. Repeating a confirmation has no further effect."""
    try:
        result = await service.confirm_payment(
            db,
            gateway,
            payload.order_id,
            payload.payment_id,
            payload.razorpay_signature,
            actor=current_user,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[PaymentVerifyResponse](message="Payment verified", data=result)


@router.post("/payment-webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
) -> WebhookAck:
    """Gateway callback. Authenticated by the X-Razorpay-Signature HMAC of the raw body."""
    body = await request.body()
    try:
        return await service.handle_webhook(db, gateway, body, x_razorpay_signature)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/payment-status",
    response_model=ApiResponse[PaymentStatusResponse],
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def payment_status(
    student_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[PaymentStatusResponse]:
    try:
        result = await service.get_payment_status(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[PaymentStatusResponse](message="Payment status fetched", data=result)

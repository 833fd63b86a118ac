from typing import Union

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.schemas import ApiResponse
from app.db.session import get_db

from .schemas import (
    AcceptDecisionResponse,
    ApplicationActionRequest,
    RejectDecisionResponse,
    StartReviewRequest,
    StartReviewResponse,
)
from . import service

router = APIRouter(tags=["applications"])


@router.post(
    "/start-review",
    response_model=ApiResponse[StartReviewResponse],
    dependencies=[Depends(check_permission("applications", "update"))],
)
async def start_review(
    payload: StartReviewRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[StartReviewResponse]:
    """Move a NEW application to PENDING_REVIEW. Requires the registration fee to be paid."""
    try:
        result = await service.start_review(db, payload, actor=current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[StartReviewResponse](message="Application under review", data=result)


@router.post(
    "/application-action",
    response_model=Union[ApiResponse[AcceptDecisionResponse], ApiResponse[RejectDecisionResponse]],
    dependencies=[Depends(check_permission("applications", "update"))],
)
async def application_action(
    payload: ApplicationActionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Accept (with selected_course_id) or reject an application. Decided applications cannot change."""
    try:
        result = await service.submit_decision(db, payload, actor=current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    if isinstance(result, AcceptDecisionResponse):
        return ApiResponse[AcceptDecisionResponse](
            message="Application accepted. Proceed to course fee payment", data=result
        )
    return ApiResponse[RejectDecisionResponse](message="Application rejected", data=result)

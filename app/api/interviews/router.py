from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.schemas import ApiResponse
from app.db.session import get_db

from .meetings import MeetingProvider, get_meeting_provider
from .schemas import ScheduleMeetRequest, ScheduleMeetResponse
from . import service

router = APIRouter(tags=["interviews"])


@router.post(
    "/schedule-meet",
    response_model=ApiResponse[ScheduleMeetResponse],
    dependencies=[Depends(check_permission("interviews", "create"))],
)
async def schedule_meet(
    payload: ScheduleMeetRequest,
    db: AsyncSession = Depends(get_db),
    provider: MeetingProvider = Depends(get_meeting_provider),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[ScheduleMeetResponse]:
    """Schedule an interview one hour from now. Returns the existing interview if one is already set."""
    try:
        result = await service.schedule_interview(db, provider, payload, actor=current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    message = "Interview scheduled" if result.created else "Interview already scheduled"
    return ApiResponse[ScheduleMeetResponse](message=message, data=result)


@router.post(
    "/reschedule-meet",
    response_model=ApiResponse[ScheduleMeetResponse],
    dependencies=[Depends(check_permission("interviews", "update"))],
)
async def reschedule_meet(
    payload: ScheduleMeetRequest,
    db: AsyncSession = Depends(get_db),
    provider: MeetingProvider = Depends(get_meeting_provider),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[ScheduleMeetResponse]:
    try:
        result = await service.reschedule_interview(db, provider, payload, actor=current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[ScheduleMeetResponse](message="Interview rescheduled", data=result)

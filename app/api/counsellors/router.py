from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.schemas import ApiListResponse, ApiResponse, MessageResponse
from app.db.session import get_db

from .schemas import (
    CounsellorAssign,
    CounsellorAssignResponse,
    CounsellorCreate,
    CounsellorResponse,
    CounsellorUpdate,
    CounsellorWithLeads,
)
from . import service

router = APIRouter(tags=["counsellors"])


@router.get(
    "/counsellors",
    response_model=Union[ApiResponse[CounsellorWithLeads], ApiListResponse[CounsellorResponse]],
    dependencies=[Depends(check_permission("counsellors", "read"))],
)
async def read_counsellors(
    counsellor_id: Optional[int] = Query(None, alias="id", description="Return one counsellor with assigned leads"),
    db: AsyncSession = Depends(get_db),
):
    """List counsellors with utilization, or one counsellor with its leads when id is given."""
    if counsellor_id is not None:
        try:
            detail = await service.get_counsellor_with_leads(db, counsellor_id)
        except ServiceError as e:
            raise HTTPException(status_code=e.status_code, detail=e.detail)
        return ApiResponse[CounsellorWithLeads](message="Counsellor fetched", data=detail)
    items = await service.list_counsellors(db)
    return ApiListResponse[CounsellorResponse](message="Counsellors fetched", count=len(items), data=items)


@router.post(
    "/create-counsellor",
    response_model=ApiResponse[CounsellorResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("counsellors", "create"))],
)
async def create_counsellor(
    payload: CounsellorCreate,
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[CounsellorResponse]:
    try:
        counsellor = await service.create_counsellor(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[CounsellorResponse](message="Counsellor created", data=counsellor)


@router.put(
    "/update-counsellor",
    response_model=ApiResponse[CounsellorResponse],
    dependencies=[Depends(check_permission("counsellors", "update"))],
)
async def update_counsellor(
    payload: CounsellorUpdate,
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[CounsellorResponse]:
    try:
        counsellor = await service.update_counsellor(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[CounsellorResponse](message="Counsellor updated", data=counsellor)


@router.delete(
    "/delete-counsellor",
    response_model=MessageResponse,
    dependencies=[Depends(check_permission("counsellors", "delete"))],
)
async def delete_counsellor(
    counsellor_id: int = Query(..., alias="id"),
    cascade: bool = Query(False, description="Unassign active leads instead of refusing"),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    try:
        await service.delete_counsellor(db, counsellor_id, cascade=cascade)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return MessageResponse(message="Counsellor deleted")


@router.post(
    "/assign-counsellor",
    response_model=ApiResponse[CounsellorAssignResponse],
    dependencies=[Depends(check_permission("counsellors", "assign"))],
)
async def assign_counsellor(
    payload: CounsellorAssign,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[CounsellorAssignResponse]:
    """Assign or reassign a lead's counsellor. Terminal leads and full counsellors are refused."""
    try:
        result = await service.assign_counsellor(db, payload, actor=current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[CounsellorAssignResponse](message="Counsellor assigned", data=result)

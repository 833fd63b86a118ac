from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import check_permission
from app.core.exceptions import ServiceError
from app.core.schemas import ApiListResponse, ApiResponse, MessageResponse
from app.db.session import get_db

from .schemas import CourseCreate, CourseResponse, CourseUpdate
from . import service

router = APIRouter(tags=["courses"])


@router.get(
    "/courses",
    response_model=ApiListResponse[CourseResponse],
    dependencies=[Depends(check_permission("courses", "read"))],
)
async def list_courses(
    active_only: bool = Query(True, description="Return only active courses by default"),
    db: AsyncSession = Depends(get_db),
) -> ApiListResponse[CourseResponse]:
    items = await service.list_courses(db, active_only=active_only)
    return ApiListResponse[CourseResponse](message="Courses fetched", count=len(items), data=items)


@router.post(
    "/create-course",
    response_model=ApiResponse[CourseResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("courses", "create"))],
)
async def create_course(
    payload: CourseCreate,
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[CourseResponse]:
    try:
        course = await service.create_course(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[CourseResponse](message="Course created", data=course)


@router.put(
    "/update-course",
    response_model=ApiResponse[CourseResponse],
    dependencies=[Depends(check_permission("courses", "update"))],
)
async def update_course(
    payload: CourseUpdate,
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[CourseResponse]:
    """Update a course. Refused once any student has enrolled."""
    try:
        course = await service.update_course(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[CourseResponse](message="Course updated", data=course)


@router.delete(
    "/delete-course",
    response_model=MessageResponse,
    dependencies=[Depends(check_permission("courses", "delete"))],
)
async def delete_course(
    course_id: int = Query(..., alias="id"),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    try:
        await service.delete_course(db, course_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return MessageResponse(message="Course deleted")

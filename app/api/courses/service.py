"""Course catalog. A course is frozen (no update, no delete) once enrolled > 0."""

import logging
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import Conflict, InvalidArgument, NotFound
from app.core.models import Course, Lead

from .schemas import CourseCreate, CourseResponse, CourseUpdate

logger = logging.getLogger(__name__)


def _course_to_response(c: Course) -> CourseResponse:
    return CourseResponse.model_validate(c)


async def get_course(db: AsyncSession, course_id: int, active_only: bool = False) -> Optional[Course]:
    q = select(Course).where(Course.id == course_id)
    if active_only:
        q = q.where(Course.is_active.is_(True))
    return (await db.execute(q)).scalar_one_or_none()


async def get_active_course_or_400(db: AsyncSession, course_id: Optional[int]) -> Course:
    """Resolve a course referenced by a request body. Missing or inactive is a bad argument."""
    if course_id is None:
        raise InvalidArgument("course_id is required")
    course = await get_course(db, course_id, active_only=True)
    if not course:
        raise InvalidArgument(f"Course {course_id} does not exist or is inactive")
    return course


async def increment_enrolled(db: AsyncSession, course_id: int) -> None:
    await db.execute(
        update(Course)
        .where(Course.id == course_id)
        .values(enrolled=Course.enrolled + 1)
        .execution_options(synchronize_session=False)
    )


async def list_courses(db: AsyncSession, active_only: bool = True) -> List[CourseResponse]:
    q = select(Course)
    if active_only:
        q = q.where(Course.is_active.is_(True))
    q = q.order_by(Course.name.asc(), Course.id.asc())
    result = await db.execute(q)
    return [_course_to_response(c) for c in result.scalars().all()]


async def create_course(db: AsyncSession, payload: CourseCreate) -> CourseResponse:
    course = Course(
        name=payload.name,
        description=payload.description,
        duration=payload.duration,
        fee=payload.fee,
        enrolled=0,
        is_active=payload.is_active,
    )
    db.add(course)
    await db.commit()
    await db.refresh(course)
    logger.info("Created course %s (%s)", course.id, course.name)
    return _course_to_response(course)


async def update_course(db: AsyncSession, payload: CourseUpdate) -> CourseResponse:
    course = await get_course(db, payload.id)
    if not course:
        raise NotFound("Course not found")
    if course.enrolled > 0:
        raise Conflict("Course has enrolled students and cannot be edited")

    data = payload.model_dump(exclude_unset=True, exclude={"id"})
    for field in ("name", "fee", "is_active"):
        if field in data and data[field] is None:
            data.pop(field)
    if not data:
        return _course_to_response(course)

    # enrolled may have changed since the read
    result = await db.execute(
        update(Course)
        .where(Course.id == course.id, Course.enrolled == 0)
        .values(**data)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Course has enrolled students and cannot be edited")
    await db.commit()
    await db.refresh(course)
    logger.info("Updated course %s", course.id)
    return _course_to_response(course)


async def delete_course(db: AsyncSession, course_id: int) -> None:
    course = await get_course(db, course_id)
    if not course:
        raise NotFound("Course not found")
    if course.enrolled > 0:
        raise Conflict("Course has enrolled students and cannot be deleted")
    bound = (
        await db.execute(select(func.count(Lead.id)).where(Lead.course_id == course_id))
    ).scalar_one()
    if bound:
        raise Conflict("Course is selected by accepted applications and cannot be deleted")

    # An acceptance or enrollment may land between the checks and the delete
    try:
        result = await db.execute(
            delete(Course)
            .where(
                Course.id == course_id,
                Course.enrolled == 0,
                ~select(Lead.id).where(Lead.course_id == course_id).exists(),
            )
            .execution_options(synchronize_session=False)
        )
    except IntegrityError as e:
        await db.rollback()
        raise Conflict("Course is in use and cannot be deleted") from e
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Course is in use and cannot be deleted")
    await db.commit()
    logger.info("Deleted course %s", course_id)

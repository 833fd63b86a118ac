from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import check_permission
from app.core.schemas import ApiResponse
from app.db.session import get_db

from .schemas import DashboardStats
from . import service

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get(
    "/stats",
    response_model=ApiResponse[DashboardStats],
    dependencies=[Depends(check_permission("dashboard", "read"))],
)
async def dashboard_stats(db: AsyncSession = Depends(get_db)) -> ApiResponse[DashboardStats]:
    stats = await service.get_stats(db)
    return ApiResponse[DashboardStats](message="Dashboard stats fetched", data=stats)

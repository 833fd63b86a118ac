from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.schemas import ApiListResponse, ApiResponse
from app.db.session import get_db

from .schemas import LeadBulkUploadResponse, LeadCreate, LeadCreateResponse, LeadResponse
from . import importer, service

router = APIRouter(tags=["leads"])


@router.get(
    "/leads",
    response_model=ApiListResponse[LeadResponse],
    dependencies=[Depends(check_permission("leads", "read"))],
)
async def list_leads(
    created_after: Optional[datetime] = Query(None, description="Only leads created at or after this time"),
    created_before: Optional[datetime] = Query(None, description="Only leads created at or before this time"),
    status_filter: Optional[str] = Query(
        None,
        alias="status",
        description="Filter by application status: NEW, PENDING_REVIEW, INTERVIEW_SCHEDULED, ACCEPTED, REJECTED",
    ),
    lead_source: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Substring of name, email or phone"),
    db: AsyncSession = Depends(get_db),
) -> ApiListResponse[LeadResponse]:
    try:
        items = await service.list_leads(
            db,
            created_after=created_after,
            created_before=created_before,
            status_filter=status_filter,
            lead_source=lead_source,
            search=search,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiListResponse[LeadResponse](message="Leads fetched", count=len(items), data=items)


@router.get(
    "/leads/{student_id}",
    response_model=ApiResponse[LeadResponse],
    dependencies=[Depends(check_permission("leads", "read"))],
)
async def get_lead(
    student_id: int,
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[LeadResponse]:
    try:
        lead = await service.get_lead(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[LeadResponse](message="Lead fetched", data=lead)


@router.post(
    "/create-lead",
    response_model=ApiResponse[LeadCreateResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("leads", "create"))],
)
async def create_lead(
    payload: LeadCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[LeadCreateResponse]:
    """Create a lead. Registration fee starts PENDING; a counsellor is assigned if capacity allows."""
    try:
        created = await service.create_lead(db, payload, actor=current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return ApiResponse[LeadCreateResponse](message="Lead created successfully", data=created)


@router.get(
    "/upload-leads/template",
    dependencies=[Depends(check_permission("leads", "create"))],
)
async def download_lead_upload_template() -> Response:
    """Download the Excel template with a lead_source dropdown. Fill the Leads sheet and upload via POST /upload-leads."""
    content = importer.build_lead_upload_template()
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": "attachment; filename=lead_upload_template.xlsx"},
    )


@router.post(
    "/upload-leads",
    response_model=ApiResponse[LeadBulkUploadResponse],
    dependencies=[Depends(check_permission("leads", "create"))],
)
async def upload_leads(
    file: UploadFile = File(
        ...,
        description="Excel (.xlsx) with columns: name, email, phone and optional education, lead_source",
    ),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApiResponse[LeadBulkUploadResponse]:
    """
    Bulk create leads from Excel. Max 500 rows. Rows are created independently:
    the response lists the rows that failed and why.
    """
    try:
        rows = await importer.parse_leads_excel(file)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    result = await importer.import_leads(db, rows, actor=current_user)
    message = f"{result.success_count} lead(s) imported, {result.failed_count} failed"
    return ApiResponse[LeadBulkUploadResponse](message=message, data=result)

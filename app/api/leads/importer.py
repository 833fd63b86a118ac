"""Excel bulk import of leads. Each row is created and committed independently."""

import io
import logging
from typing import Dict, List, Optional, Tuple

from fastapi import UploadFile
from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.datavalidation import DataValidation
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.enums import LeadSource
from app.core.exceptions import InvalidArgument, ServiceError

from . import service
from .schemas import FailedLead, LeadBulkUploadResponse, LeadCreate

logger = logging.getLogger(__name__)

EXCEL_MAX_ROWS = 500
EXCEL_REQUIRED_HEADERS = ("name", "email", "phone")
EXCEL_OPTIONAL_HEADERS = ("education", "lead_source")
LEADS_SHEET_NAME = "Leads"
SOURCES_SHEET_NAME = "Lead Sources"


def build_lead_upload_template() -> bytes:
    """Build Excel template with the expected headers and a lead_source dropdown."""
    wb = Workbook()
    ws_leads = wb.active
    ws_leads.title = LEADS_SHEET_NAME
    ws_leads.append(list(EXCEL_REQUIRED_HEADERS + EXCEL_OPTIONAL_HEADERS))

    ws_sources = wb.create_sheet(SOURCES_SHEET_NAME)
    ws_sources.append(["lead_source"])
    sources = [s.value for s in LeadSource]
    for source in sources:
        ws_sources.append([source])

    dv_source = DataValidation(
        type="list",
        formula1=f"'{SOURCES_SHEET_NAME}'!$A$2:$A${1 + len(sources)}",
        allow_blank=True,
    )
    dv_source.error = "Select a value from the Lead Source dropdown"
    ws_leads.add_data_validation(dv_source)
    dv_source.add(f"E2:E{EXCEL_MAX_ROWS + 1}")

    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()


def _cell_str(row: tuple, col: Optional[int]) -> str:
    if col is None or col >= len(row):
        return ""
    v = row[col]
    if v is None:
        return ""
    if isinstance(v, float) and v.is_integer():
        # Phone numbers typed into Excel come back as floats
        v = int(v)
    return str(v).strip()


async def parse_leads_excel(file: UploadFile) -> List[Tuple[int, Dict[str, str]]]:
    """
    Parse uploaded Excel into (row_number, values) pairs. First row = headers.
    Max 500 data rows. Raises InvalidArgument on an unreadable file or missing headers.
    """
    if not file.filename or not file.filename.lower().endswith(".xlsx"):
        raise InvalidArgument("File must be an Excel file (.xlsx)")

    content = await file.read()
    if not content:
        raise InvalidArgument("File is empty")

    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise InvalidArgument(f"Invalid Excel file: {e}") from e

    try:
        ws = wb.active
        if ws is None:
            raise InvalidArgument("Excel file has no active sheet")

        rows_iter = ws.iter_rows(values_only=True)
        header_row = next(rows_iter, None)
        if not header_row:
            raise InvalidArgument("Excel file has no header row")

        def _norm(s) -> str:
            return (str(s).strip().lower() if s is not None else "").replace(" ", "_")

        header_row = [_norm(c) for c in header_row]
        col_idx: Dict[str, Optional[int]] = {}
        for h in EXCEL_REQUIRED_HEADERS:
            if h not in header_row:
                raise InvalidArgument(f"Missing required column: {h}. Found: {header_row}")
            col_idx[h] = header_row.index(h)
        for h in EXCEL_OPTIONAL_HEADERS:
            col_idx[h] = header_row.index(h) if h in header_row else None

        rows: List[Tuple[int, Dict[str, str]]] = []
        for row_num, row in enumerate(rows_iter, start=2):
            if not row or all(c is None or (isinstance(c, str) and not c.strip()) for c in row):
                continue
            if len(rows) >= EXCEL_MAX_ROWS:
                raise InvalidArgument(f"Maximum {EXCEL_MAX_ROWS} data rows allowed")
            rows.append((row_num, {h: _cell_str(row, i) for h, i in col_idx.items()}))
    finally:
        wb.close()
    return rows


def _validation_reason(e: ValidationError) -> str:
    err = e.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ())) or "row"
    return f"{field}: {err.get('msg', 'invalid value')}"


async def import_leads(
    db: AsyncSession,
    rows: List[Tuple[int, Dict[str, str]]],
    actor: Optional[CurrentUser] = None,
) -> LeadBulkUploadResponse:
    """Create each row as a lead. Failures are reported per row; successes are kept."""
    failed: List[FailedLead] = []
    success_count = 0
    emails_seen: set = set()

    for row_num, values in rows:
        email = values.get("email") or None
        try:
            payload = LeadCreate(
                name=values.get("name", ""),
                email=values.get("email", ""),
                phone=values.get("phone", ""),
                education=values.get("education") or None,
                lead_source=values.get("lead_source") or None,
            )
        except ValidationError as e:
            failed.append(FailedLead(row=row_num, email=email, reason=_validation_reason(e)))
            continue

        key = payload.email.lower()
        if key in emails_seen:
            failed.append(FailedLead(row=row_num, email=email, reason=f"Duplicate email in upload: {email}"))
            continue
        emails_seen.add(key)

        try:
            await service.create_lead(db, payload, actor=actor)
        except ServiceError as e:
            failed.append(FailedLead(row=row_num, email=email, reason=e.message))
            continue
        success_count += 1

    logger.info("Lead import finished: %d created, %d failed", success_count, len(failed))
    return LeadBulkUploadResponse(
        success_count=success_count,
        failed_count=len(failed),
        failed_leads=failed,
    )

"""
Audit trail for lead, payment and interview changes. Entries join the caller's
transaction, so a change and its audit row commit or roll back together.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.models import AuditLog


async def log_audit(
    db: AsyncSession,
    entity_type: str,
    entity_id: int,
    action: str,
    *,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    actor: Optional[CurrentUser] = None,
    remarks: Optional[str] = None,
) -> AuditLog:
    """Stage one entry. actor is None for gateway callbacks. Caller must commit."""
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        performed_by=actor.id if actor is not None else None,
        performed_by_role=actor.role if actor is not None else None,
        remarks=remarks,
        timestamp=datetime.utcnow(),
    )
    db.add(entry)
    return entry

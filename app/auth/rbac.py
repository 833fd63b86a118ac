from typing import Dict

from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole


_READ_ONLY = {"create": False, "read": True, "update": False, "delete": False}
_FULL = {"create": True, "read": True, "update": True, "delete": True}

# ADMIN bypasses checks; STAFF runs the admissions workflow but cannot edit reference data.
ROLE_PERMISSIONS: Dict[str, Dict[str, Dict[str, bool]]] = {
    UserRole.STAFF.value: {
        "leads": _FULL,
        "payments": _FULL,
        "applications": _FULL,
        "interviews": _FULL,
        "dashboard": _READ_ONLY,
        "courses": _READ_ONLY,
        "counsellors": {"create": False, "read": True, "update": False, "delete": False, "assign": True},
    },
}


def check_permission(module: str, action: str):
    """
    Dependency factory to enforce a specific permission.

    Example:
        Depends(check_permission("courses", "create"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if current_user.role == UserRole.ADMIN.value:
            return
        permissions = ROLE_PERMISSIONS.get(current_user.role, {})
        module_perms = permissions.get(module, {})
        if not module_perms.get(action, False):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker

# utils/admin_scope.py

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from utils.config import CMS_ADMIN_ROLES, CMS_ADMIN_SESSION_KEY


def _session(request: Request) -> Optional[dict]:
    # request.session asserts when SessionMiddleware is not installed
    if "session" not in request.scope:
        return None
    return request.session


def is_cms_admin(request: Request) -> bool:
    """
    The admin login flow lives elsewhere; it leaves either an explicit
    CMS flag or a role in the signed session cookie. NEVER throws.
    """
    session = _session(request)
    if not session:
        return False

    # 1) Explicit CMS admin flag
    if session.get(CMS_ADMIN_SESSION_KEY) in (True, "1", 1):
        return True

    # 2) Role-based session (shared admin login)
    role = (session.get("role") or "")
    if isinstance(role, str) and role.strip().lower() in CMS_ADMIN_ROLES:
        return True

    return False


def require_cms_admin(request: Request) -> None:
    if not is_cms_admin(request):
        raise HTTPException(status_code=401, detail="Unauthorized")

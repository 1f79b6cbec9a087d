import secrets

from fastapi import Header

from playplan.config import settings
from playplan.services.errors import AdminAuthError


async def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    """Guard admin endpoints when ADMIN_API_KEY is configured; open otherwise."""
    if not settings.admin_api_key:
        return
    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.admin_api_key):
        raise AdminAuthError()

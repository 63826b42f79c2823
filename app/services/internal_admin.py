import logging
import secrets

from fastapi import Header, HTTPException

from app.core.config import settings

log = logging.getLogger(__name__)


async def require_internal_admin(x_internal_admin_key: str | None = Header(default=None)) -> None:
    expected = settings.internal_admin_key
    if not x_internal_admin_key or not secrets.compare_digest(x_internal_admin_key, expected):
        log.warning("internal admin: rejected request")
        raise HTTPException(status_code=403, detail="Internal admin key required")

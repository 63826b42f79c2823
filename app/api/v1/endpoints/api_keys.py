from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.security import generate_api_key
from app.models.api_key import ApiKey
from app.schemas.api_key import ApiKeyCreate, ApiKeyIssuedOut, ApiKeyOut
from app.services.internal_admin import require_internal_admin


log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api-keys", response_model=ApiKeyIssuedOut, dependencies=[Depends(require_internal_admin)])
async def issue_api_key(payload: ApiKeyCreate, db: AsyncSession = Depends(get_db)) -> ApiKeyIssuedOut:
    """
    Issue a key for a user. The plain key is only ever returned here.
    Internal-only: callers authenticate with the internal admin key.
    """
    parts = generate_api_key()
    row = ApiKey(
        subject=payload.subject,
        role=payload.role,
        key_prefix=parts.prefix,
        key_hash=parts.hashed,
        is_active=True,
    )
    db.add(row)
    await db.commit()

    log.info("api keys: issued %s for subject %s (role=%s)", row.id, row.subject, row.role)
    return ApiKeyIssuedOut(
        id=row.id,
        subject=row.subject,
        role=row.role,
        key_prefix=row.key_prefix,
        plain_key=parts.plain,
    )


@router.post(
    "/api-keys/{key_id}/revoke",
    response_model=ApiKeyOut,
    dependencies=[Depends(require_internal_admin)],
)
async def revoke_api_key(key_id: str, db: AsyncSession = Depends(get_db)) -> ApiKeyOut:
    row = await db.get(ApiKey, key_id)
    if row is None:
        raise HTTPException(status_code=404, detail="API key not found")

    if row.is_active:
        row.is_active = False
        row.revoked_at = datetime.now(timezone.utc)
        await db.commit()
        log.info("api keys: revoked %s", key_id)

    return ApiKeyOut(
        id=row.id,
        subject=row.subject,
        role=row.role,
        key_prefix=row.key_prefix,
        is_active=row.is_active,
    )

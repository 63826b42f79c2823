import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.ids import MAX_NUMERIC_ID
from app.core.security import hash_api_key
from app.models.api_key import ApiKey

log = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

DELIVERY_DESK_ROLES = frozenset({"admin", "manager"})


@dataclass(frozen=True)
class Actor:
    api_key_id: str
    subject: str
    role: str  # "admin" | "manager" | "courier"

    @property
    def user_id(self) -> int | None:
        # Subjects are user ids issued by the identity provider; anything else
        # cannot be stamped on a delivery.
        s = self.subject.strip()
        if not (s.isascii() and s.isdigit()):
            return None
        value = int(s)
        return value if 0 < value <= MAX_NUMERIC_ID else None


async def get_actor(
    api_key: str | None = Security(api_key_header),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing X-API-Key")

    hashed = hash_api_key(api_key)
    stmt = select(ApiKey).where(ApiKey.key_hash == hashed, ApiKey.is_active.is_(True))
    row = (await db.execute(stmt)).scalar_one_or_none()
    if not row:
        log.warning("auth: rejected unknown or revoked api key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    return Actor(api_key_id=row.id, subject=row.subject, role=row.role)


def require_manager_or_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role not in DELIVERY_DESK_ROLES:
        raise HTTPException(status_code=403, detail="Manager or admin role required")
    return actor


def require_acting_user_id(actor: Actor = Depends(require_manager_or_admin)) -> int:
    user_id = actor.user_id
    if user_id is None:
        log.warning("auth: api key %s has no numeric user id", actor.api_key_id)
        raise HTTPException(status_code=401, detail="Acting user id missing from credentials")
    return user_id

from __future__ import annotations
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.audit_log import AuditLog
from app.services.auth import Actor

async def audit(
    db: AsyncSession,
    *,
    actor: Actor | None,
    action: str,
    target_type: str | None = None,
    target_id: str | None = None,
    detail: dict | None = None,
) -> None:
    """Append an audit row and commit it; delivery writes are already committed by the store."""
    db.add(AuditLog(
        actor_api_key_id=actor.api_key_id if actor else None,
        actor_subject=actor.subject if actor else None,
        action=action,
        target_type=target_type,
        target_id=target_id,
        detail=detail or {},
    ))
    await db.commit()

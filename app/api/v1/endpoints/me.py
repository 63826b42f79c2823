from fastapi import APIRouter, Depends

from app.schemas.me import MeOut
from app.services.auth import Actor, get_actor

router = APIRouter()

@router.get("/me", response_model=MeOut)
async def me(actor: Actor = Depends(get_actor)) -> MeOut:
    return MeOut(
        api_key_id=actor.api_key_id,
        subject=actor.subject,
        role=actor.role,
        user_id=actor.user_id,
    )

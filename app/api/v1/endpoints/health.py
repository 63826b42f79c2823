from fastapi import APIRouter

from app.core.config import settings

router = APIRouter()

@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "service": settings.service_name}

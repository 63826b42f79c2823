from datetime import date
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_db
from app.core.ids import MAX_NUMERIC_ID, is_valid_id
from app.generation.registry import supported_patterns
from app.models.delivery import Delivery
from app.schemas.delivery import (
    DeliveryCreate,
    DeliveryOut,
    DeliveryUpdate,
    GenerateDeliveriesIn,
    GenerateDeliveriesOut,
    GenerationPatternsOut,
)
from app.services.audit import audit
from app.services.auth import Actor, require_acting_user_id, require_manager_or_admin
from app.services.deliveries import DeliveryService
from app.services.delivery_state import DeliveryStatus, allowed_next
from app.services.delivery_store import SqlDeliveryStore
from app.services.errors import GenerationInterrupted
from app.services.generation import GenerationEngine, GenerationRequest


log = logging.getLogger(__name__)
router = APIRouter()


def get_delivery_service(db: AsyncSession = Depends(get_db)) -> DeliveryService:
    return DeliveryService(SqlDeliveryStore(db))


def get_generation_engine(db: AsyncSession = Depends(get_db)) -> GenerationEngine:
    return GenerationEngine(SqlDeliveryStore(db))


def _delivery_id(delivery_id: str) -> str:
    if not is_valid_id("dly", delivery_id):
        raise HTTPException(status_code=400, detail="Invalid delivery ID")
    return delivery_id


def delivery_out(d: Delivery) -> DeliveryOut:
    return DeliveryOut(
        id=d.id,
        courier_id=d.courier_id,
        status=d.status,
        scheduled_date=d.scheduled_date,
        notes=d.notes,
        created_by_user_id=d.created_by_user_id,
        created_at=d.created_at,
        updated_at=d.updated_at,
        allowed_transitions=allowed_next(d.status),
    )


@router.get("/deliveries", response_model=list[DeliveryOut])
async def list_deliveries(
    on_date: date | None = Query(default=None, alias="date"),
    courier_id: int | None = Query(default=None, gt=0, le=MAX_NUMERIC_ID),
    status: DeliveryStatus | None = Query(default=None),
    actor: Actor = Depends(require_manager_or_admin),
    service: DeliveryService = Depends(get_delivery_service),
) -> list[DeliveryOut]:
    log.info("deliveries: list date=%s courier_id=%s status=%s", on_date, courier_id, status)
    rows = await service.list_filtered(date=on_date, courier_id=courier_id, status=status)
    return [delivery_out(r) for r in rows]


@router.get("/deliveries/patterns", response_model=GenerationPatternsOut)
async def list_generation_patterns(
    actor: Actor = Depends(require_manager_or_admin),
) -> GenerationPatternsOut:
    return GenerationPatternsOut(default=settings.default_generation_pattern, patterns=supported_patterns())


@router.get("/deliveries/{delivery_id}", response_model=DeliveryOut)
async def get_delivery(
    delivery_id: str = Depends(_delivery_id),
    actor: Actor = Depends(require_manager_or_admin),
    service: DeliveryService = Depends(get_delivery_service),
) -> DeliveryOut:
    return delivery_out(await service.get_by_id(delivery_id))


@router.post("/deliveries", response_model=DeliveryOut, status_code=201)
async def create_delivery(
    payload: DeliveryCreate,
    response: Response,
    actor: Actor = Depends(require_manager_or_admin),
    user_id: int = Depends(require_acting_user_id),
    service: DeliveryService = Depends(get_delivery_service),
    db: AsyncSession = Depends(get_db),
) -> DeliveryOut:
    delivery = await service.create(payload, user_id)
    out = delivery_out(delivery)

    await audit(
        db,
        actor=actor,
        action="delivery.create",
        target_type="delivery",
        target_id=delivery.id,
        detail={"courier_id": delivery.courier_id, "scheduled_date": delivery.scheduled_date.isoformat()},
    )

    response.headers["Location"] = f"/v1/deliveries/{delivery.id}"
    return out


@router.put("/deliveries/{delivery_id}", response_model=DeliveryOut)
async def update_delivery(
    payload: DeliveryUpdate,
    delivery_id: str = Depends(_delivery_id),
    actor: Actor = Depends(require_manager_or_admin),
    service: DeliveryService = Depends(get_delivery_service),
    db: AsyncSession = Depends(get_db),
) -> DeliveryOut:
    delivery = await service.update(delivery_id, payload)
    out = delivery_out(delivery)

    await audit(
        db,
        actor=actor,
        action="delivery.update",
        target_type="delivery",
        target_id=delivery_id,
        detail=payload.model_dump(mode="json", exclude_unset=True),
    )
    return out


@router.delete("/deliveries/{delivery_id}", status_code=204)
async def delete_delivery(
    delivery_id: str = Depends(_delivery_id),
    actor: Actor = Depends(require_manager_or_admin),
    service: DeliveryService = Depends(get_delivery_service),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await service.delete(delivery_id)
    await audit(db, actor=actor, action="delivery.delete", target_type="delivery", target_id=delivery_id)
    return Response(status_code=204)


def _generation_detail(request: GenerationRequest) -> dict:
    return {
        "pattern": request.pattern,
        "date_range_start": request.date_range_start.isoformat(),
        "date_range_end": request.date_range_end.isoformat(),
        "courier_pool": list(request.courier_pool),
    }


@router.post("/deliveries/generate", response_model=GenerateDeliveriesOut)
async def generate_deliveries(
    payload: GenerateDeliveriesIn,
    actor: Actor = Depends(require_manager_or_admin),
    user_id: int = Depends(require_acting_user_id),
    engine: GenerationEngine = Depends(get_generation_engine),
    db: AsyncSession = Depends(get_db),
) -> GenerateDeliveriesOut:
    request = GenerationRequest.build(
        date_range_start=payload.date_range_start,
        date_range_end=payload.date_range_end,
        courier_pool=payload.courier_pool,
        pattern=payload.pattern,
        criteria=payload.criteria,
    )
    try:
        result = await engine.generate(request, user_id)
    except GenerationInterrupted as e:
        # Deliveries committed before the interruption stay; record them.
        try:
            await audit(
                db,
                actor=actor,
                action="delivery.generate",
                target_type="delivery_batch",
                detail={
                    **_generation_detail(request),
                    "generated_count": e.generated_count,
                    "generated_ids": [d.id for d in e.generated],
                    "interrupted": True,
                },
            )
        except (SQLAlchemyError, OSError):
            log.exception("deliveries: audit of interrupted generation failed")
        raise

    out = GenerateDeliveriesOut(
        generated_count=result.generated_count,
        skipped_count=result.skipped_count,
        generated_deliveries=[delivery_out(d) for d in result.generated_deliveries],
    )

    await audit(
        db,
        actor=actor,
        action="delivery.generate",
        target_type="delivery_batch",
        detail={
            **_generation_detail(request),
            "generated_count": result.generated_count,
            "skipped_count": result.skipped_count,
        },
    )
    return out

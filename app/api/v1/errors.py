import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.schemas.common import ErrorResponse
from app.services.errors import (
    DeliveryError,
    DuplicateDelivery,
    GenerationInterrupted,
    InvalidTransition,
    NotFound,
    StoreUnavailable,
    ValidationError,
)

log = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[DeliveryError], int] = {
    ValidationError: 422,
    NotFound: 404,
    InvalidTransition: 409,
    DuplicateDelivery: 409,
    StoreUnavailable: 503,
    GenerationInterrupted: 503,
}


def status_for(exc: DeliveryError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


async def delivery_error_handler(request: Request, exc: DeliveryError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        log.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    body = ErrorResponse(code=exc.code, message=exc.message, details=exc.details())
    headers = {"Retry-After": "5"} if status_code == 503 else None
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def _field_of(loc: tuple) -> str:
    # loc[0] is body/query/path; fall back to it for whole-body errors
    loc = tuple(loc) or ("request",)
    return ".".join(str(p) for p in loc[1:]) or str(loc[0])


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"field": _field_of(err.get("loc", ())), "message": err.get("msg", "invalid value")} for err in exc.errors()]
    body = ErrorResponse(code=ValidationError.code, message="Request validation failed", details=details)
    return JSONResponse(status_code=422, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DeliveryError, delivery_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

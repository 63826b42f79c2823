import logging

from fastapi import FastAPI

from app.api.v1.errors import register_error_handlers
from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.telemetry import setup_telemetry

logging.basicConfig(level=settings.log_level)

app = FastAPI(title="Courier API", version="0.1.0")

setup_telemetry(app)
register_error_handlers(app)
app.include_router(v1_router)

# booking_engine/main.py
from __future__ import annotations

# Load .env early so settings and os.getenv agree everywhere
from dotenv import load_dotenv
load_dotenv()

import sqlalchemy as sa
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import settings
from booking_engine.core.logging import LoggingMiddleware, get_logger, setup_logging
from booking_engine.api.errors import register_exception_handlers
from booking_engine.db.session import get_session

# Routers
from booking_engine.api.routes.public import router as public_router
from booking_engine.api.routes.voice import router as voice_router
from booking_engine.api.routes.automation import router as automation_router
from booking_engine.api.routes.staff import router as staff_router

# Set up structured logging
setup_logging(
    debug=settings.is_development,
    max_log_length=settings.MAX_LOG_LENGTH,
    level=settings.LOG_LEVEL,
)
logger = get_logger(__name__)

app = FastAPI(title="Booking Engine", description="Availability and booking engine for multi-tenant scheduling")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

logging_middleware = LoggingMiddleware(
    log_requests=settings.LOG_REQUESTS or settings.is_development,
    log_responses=settings.LOG_RESPONSES or settings.is_development,
    slow_threshold=settings.SLOW_REQUEST_THRESHOLD,
)
app.middleware("http")(logging_middleware)

register_exception_handlers(app)


# -------- Health / readiness (public) --------
@app.get("/healthz", include_in_schema=False)
async def healthz():
    return {"ok": True}


@app.get("/readyz", include_in_schema=False)
async def readyz(db: AsyncSession = Depends(get_session)):
    await db.execute(sa.text("SELECT 1"))
    return {"db": "ok"}


app.include_router(public_router)
app.include_router(voice_router)
app.include_router(automation_router)
app.include_router(staff_router)

logger.info("app_started", env=settings.APP_ENV)

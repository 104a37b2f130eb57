"""
STEAM Engagement Bot - Main FastAPI Application
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from steambot.core.config import settings
from steambot.core.logging import setup_logging, get_logger
from steambot.core.middleware import setup_middleware, setup_exception_handlers
from steambot.api.routes import router as api_router
from steambot.db.database import create_tables, engine
from steambot.domain.services.flood_monitor import get_flood_monitor

# before any module logs
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


# the widget is embedded on the organization's site; local widget dev ports in DEBUG
_DEV_WIDGET_ORIGINS = ["http://localhost", "http://localhost:3000", "http://127.0.0.1:3000"]


def cors_origins(raw: str, debug: bool) -> list[str]:
    """Comma-separated ALLOWED_ORIGINS, or the local widget ports when unset in DEBUG"""
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins and debug:
        return list(_DEV_WIDGET_ORIGINS)
    return origins


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, own the flood sweeper task, release connections on exit"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    await create_tables()

    flood_monitor = get_flood_monitor()
    flood_monitor.start_sweeper()

    try:
        yield
    finally:
        await flood_monitor.stop_sweeper()
        if settings.FLOOD_BACKEND == "redis":
            from steambot.core.redis_client import close_redis
            close_redis()
        await engine.dispose()
        logger.info("Application stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Customer-engagement assistant for web chat and SMS. Every message passes "
        "deterministic guardrails before and after the language-model call."
    ),
    openapi_tags=[
        {"name": "Chat", "description": "Web chat widget: messages, lead details, session end and history."},
        {"name": "Webhooks", "description": "Twilio inbound SMS webhook."},
        {"name": "Health", "description": "Liveness probe."},
    ],
    lifespan=lifespan,
)

setup_middleware(app)
setup_exception_handlers(app)

_origins = cors_origins(settings.ALLOWED_ORIGINS, settings.DEBUG)
if _origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")


@app.get("/health", summary="Liveness probe", tags=["Health"])
async def health_check() -> dict[str, str]:
    """The process is up; the database and upstreams are not checked"""
    return {"status": "healthy"}

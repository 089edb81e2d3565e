"""
FastAPI application entry point.
Configures middleware, routes, error rendering and the lifecycle of the
expiry sweeper and notification dispatcher.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import logging

from src.config import get_settings
from src.db.database import init_db, engine, async_session_factory
from src.api.routes.trades import router as trades_router
from src.core.exceptions import AppException
from src.core.logging_service import (
    setup_structured_logging,
    RequestLoggingMiddleware,
    log_system_event,
)
from src.schemas.common import ErrorResponse, HealthResponse
from src.services.expiry_sweeper import ExpirySweeper
from src.services.notification_dispatcher import build_dispatcher
from src.services.trade_engine import TradeEngine


APP_VERSION = "1.0.0"

app_settings = get_settings()

# Configure structured JSON logging for production
if not app_settings.debug:
    setup_structured_logging(level="INFO", json_output=True)
else:
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifecycle manager.
    Creates tables, wires the trade engine and starts the expiry sweeper;
    on shutdown stops the sweeper and waits for pending notifications.
    """
    startup_time = datetime.now(timezone.utc)
    logger.info(f"Starting {app_settings.app_name}")

    await init_db()

    dispatcher = build_dispatcher(app_settings)
    trade_engine = TradeEngine(
        async_session_factory,
        dispatcher=dispatcher,
        settings=app_settings,
    )
    sweeper = ExpirySweeper(
        async_session_factory,
        lock_manager=trade_engine.lock_manager,
        dispatcher=dispatcher,
        settings=app_settings,
    )

    app.state.trade_engine = trade_engine
    app.state.sweeper = sweeper
    app.state.dispatcher = dispatcher

    if app_settings.sweeper_enabled:
        await sweeper.start()
    else:
        logger.info("Expiry sweeper disabled by configuration")

    log_system_event("startup", "api", version=APP_VERSION, sweeper_enabled=app_settings.sweeper_enabled)

    yield

    logger.info("Shutting down")
    await sweeper.stop()
    await dispatcher.close()
    await engine.dispose()

    uptime = (datetime.now(timezone.utc) - startup_time).total_seconds()
    log_system_event("shutdown", "api", uptime_seconds=round(uptime, 1))
    logger.info("Shutdown complete")


app = FastAPI(
    title="Trade Negotiation & Fulfillment Engine",
    description="Item-for-item trades with counter-offers, shipment tracking and mutual confirmation",
    version=APP_VERSION,
    lifespan=lifespan,
    # Disable trailing slash redirects - they cause CORS preflight failures
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins_list,
    allow_credentials=app_settings.cors_allow_credentials,
    allow_methods=app_settings.cors_methods_list,
    allow_headers=app_settings.cors_headers_list,
)

# Innermost - logs after processing
app.add_middleware(RequestLoggingMiddleware)

app.include_router(trades_router, prefix="/api/v1")


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Renders application errors as ErrorResponse with the error's status code.
    """
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} refused: {exc.error_code}: {exc.message}")

    body = ErrorResponse(error=exc.error_code, message=exc.message, details=exc.details or None)
    headers = {"Retry-After": "0"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(),
        headers=headers,
    )


@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> JSONResponse:
    """
    Health check endpoint for load balancers.
    Reports database connectivity and whether the sweeper loop is running.
    """
    database = "healthy"
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        database = "unhealthy"

    sweeper = getattr(request.app.state, "sweeper", None)
    body = HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        database=database,
        sweeper_running=bool(sweeper and sweeper.is_running),
        version=APP_VERSION,
    )
    return JSONResponse(
        content=body.model_dump(),
        status_code=200 if database == "healthy" else 503,
    )

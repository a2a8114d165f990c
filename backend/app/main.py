from contextlib import asynccontextmanager
import logging

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.core.exceptions import (
    ChannelTransportError,
    ConcurrentEscalationConflict,
    EngineError,
    EscalationNotAllowed,
    InvalidNotificationState,
    NotificationAccessDenied,
    NotFoundError,
    PolicyConflict,
    RuleEvaluationError,
)
from app.core.limiter import limiter
from app.core.logging import setup_logging

setup_logging()

logger = logging.getLogger(__name__)

# Initialize Sentry error monitoring
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.APP_ENV,
        send_default_pii=False,
    )
    logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup - relay realtime pushes published by workers to this process's sockets
    from app.services.realtime import bridge

    if settings.REALTIME_BRIDGE_ENABLED:
        await bridge.start()
    yield
    # Shutdown
    if bridge.running:
        await bridge.stop()


app = FastAPI(
    title="Inquiry SLA & Notification Engine",
    version="0.1.0",
    docs_url="/api/docs" if settings.APP_ENV != "production" else None,
    redoc_url="/api/redoc" if settings.APP_ENV != "production" else None,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_ENGINE_ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PolicyConflict, status.HTTP_409_CONFLICT),
    (EscalationNotAllowed, status.HTTP_409_CONFLICT),
    (ConcurrentEscalationConflict, status.HTTP_409_CONFLICT),
    (InvalidNotificationState, status.HTTP_409_CONFLICT),
    (NotificationAccessDenied, status.HTTP_403_FORBIDDEN),
    (RuleEvaluationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ChannelTransportError, status.HTTP_502_BAD_GATEWAY),
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    for exc_type, code in _ENGINE_ERROR_STATUS:
        if isinstance(exc, exc_type):
            break
    else:
        code = status.HTTP_400_BAD_REQUEST
    if code >= 500:
        logger.warning("%s %s - %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s %s - %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


# ─── Routers ───
from app.api.v1.realtime import router as realtime_router  # noqa: E402
from app.api.v1.router import api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
app.include_router(realtime_router)


@app.get("/health")
async def health():
    return {"status": "ok", "env": settings.APP_ENV}

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from core.logging import configure_logging, get_logger, set_correlation_id
from db import init_db
from api.error_handling import register_exception_handlers
from api.auth.views import router as auth_router
from api.two_factor.views import router as two_factor_router


configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuse to start without the keys this environment requires
    settings.check_secrets()
    if settings.CREATE_TABLES_ON_STARTUP:
        await init_db()
        logger.info("tables_created")
    logger.info("startup", mode=settings.APP_ENV, debug=settings.DEBUG)
    yield
    logger.info("shutdown")


app = FastAPI(
    title="GUARDIAN 3PL Auth API",
    description="Authentication, session and two-factor management for the GUARDIAN 3PL platform",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Bind a correlation id to every request and echo it back."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app, debug=settings.DEBUG)

app.include_router(auth_router, prefix="/api/v1")
app.include_router(two_factor_router, prefix="/api/v1")


@app.get("/health", tags=["system"])
async def health_check():
    """Liveness probe. Does not touch the database."""
    return {"success": True, "data": {"status": "healthy"}}

"""
main.py
FastAPI application entry point.
Registers all routers, middleware, exception handlers and startup/shutdown events.
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.database import close_db, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from shared.exceptions import AppError

# Service routers
from services.admin.router import router as admin_router
from services.auth.router import router as auth_router
from services.booking.router import router as booking_router
from services.catalog.router import router as catalog_router
from services.notification.router import router as notification_router
from services.payment.router import router as payment_router
from services.rating.router import router as rating_router
from services.sevak.router import router as sevak_router
from services.user.router import router as user_router
from services.vendor.router import router as vendor_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            log_data["request_id"] = request_id
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)

    await init_db()
    logger.info("Database connected")

    try:
        await init_redis()
        logger.info("Redis connected")
    except Exception:
        logger.warning(
            "Redis unavailable, running without catalog cache, token deny-list or rate limiting",
            exc_info=True,
        )

    # Seed the catalog, only in dev
    if settings.is_development:
        await seed_initial_data()

    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


def _error_body(message: str, request: Request, **extra) -> dict:
    body = {"success": False, "message": message, **extra}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return body


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Sevak Home Services API

REST API for the home-services marketplace:
- **Auth**: phone/email + password, OTP verification, JWT (15min) + refresh token rotation
- **Profile**: role-specific details, completion score, verification documents
- **Catalog**: categories, services, favorites
- **Bookings**: create, reschedule, cancel, hourly slot availability
- **Sevak**: job board, accept, OTP check-in, check-out, completion, earnings
- **Payments**: Razorpay orders, signature verification, invoices, refunds
- **Ratings** and in-app **Notifications**
- **Vendor**: dashboard, own services, orders and revenue
- **Admin**: dashboard, sevak moderation and document verification, assignment, analytics,
  platform settings, offers, broadcasts, audit log

### Authentication
All protected endpoints require `Authorization: Bearer <access_token>` header.

### Roles
- `resident`: book services, pay, rate
- `sevak`: accept and fulfil jobs, view earnings
- `vendor`: owns catalog entries, sees their orders and revenue
- `admin`: full platform access
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (order matters, outermost first) ────────────────
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Fixed-window limiter for unauthenticated clients, keyed by IP.
        Health, docs and metrics are exempt. Fails open when Redis is down.
        """
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths or request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        from config.redis_client import redis_client
        if redis_client:
            client_ip = request.client.host if request.client else "unknown"
            allowed = await RedisCache(redis_client).check_rate_limit(
                f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
            )
            if not allowed:
                logger.warning("Rate limit exceeded for IP %s", client_ip)
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content=_error_body("Rate limit exceeded. Please slow down.", request),
                    headers={"Retry-After": "60"},
                )

        return await call_next(request)

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message,
                         extra={"request_id": getattr(request.state, "request_id", None)})
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, request))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body("Validation failed", request, errors=jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail), request),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("Integrity error: %s", exc.orig,
                       extra={"request_id": getattr(request.state, "request_id", None)})
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=_error_body("Duplicate entry", request))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error("Unhandled exception: %s", exc, exc_info=True, extra={"request_id": request_id})
        detail = str(exc) if settings.DEBUG else "An internal server error occurred"
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_body(detail, request))

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from sqlalchemy import text

        from config.database import AsyncSessionLocal
        from config.redis_client import redis_client

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            logger.error("Health check: database unreachable", exc_info=True)
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if not redis_client:
                raise RuntimeError("Redis not initialized")
            await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            logger.error("Health check: redis unreachable", exc_info=True)
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    # Register all service routers
    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(catalog_router)
    app.include_router(booking_router)
    app.include_router(sevak_router)
    app.include_router(vendor_router)
    app.include_router(rating_router)
    app.include_router(payment_router)
    app.include_router(notification_router)
    app.include_router(admin_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Dev Data Seeder ───────────────────────────────────────────

async def seed_initial_data():
    """Seed categories and services on first run (development only)."""
    from decimal import Decimal

    from sqlalchemy import func, select

    from config.database import AsyncSessionLocal
    from shared.models.models import Category, Service

    async with AsyncSessionLocal() as db:
        count = await db.scalar(select(func.count(Service.id)))
        if count and count > 0:
            return

        seed_categories = [
            {"name": "Cleaning", "icon": "broom", "display_order": 1},
            {"name": "Plumbing", "icon": "wrench", "display_order": 2},
            {"name": "Electrical", "icon": "bolt", "display_order": 3},
            {"name": "Appliance Repair", "icon": "plug", "display_order": 4},
            {"name": "Pest Control", "icon": "bug", "display_order": 5},
        ]
        seed_services = [
            {"name": "Full Home Cleaning", "category": "Cleaning", "subcategory": "Deep Clean", "base_price": Decimal("2499"), "duration": 240},
            {"name": "Bathroom Cleaning", "category": "Cleaning", "subcategory": "Bathroom", "base_price": Decimal("499"), "duration": 60},
            {"name": "Tap Repair", "category": "Plumbing", "subcategory": "Repair", "base_price": Decimal("199"), "duration": 30},
            {"name": "Fan Installation", "category": "Electrical", "subcategory": "Installation", "base_price": Decimal("299"), "duration": 45},
            {"name": "AC Service", "category": "Appliance Repair", "subcategory": "AC", "base_price": Decimal("599"), "duration": 90},
            {"name": "Cockroach Control", "category": "Pest Control", "subcategory": "General", "base_price": Decimal("999"), "duration": 120},
        ]

        for c in seed_categories:
            db.add(Category(**c))
        for s in seed_services:
            db.add(Service(description=f"Professional {s['name'].lower()} at your doorstep", **s))

        await db.commit()
        logger.info("Seeded %d categories and %d services", len(seed_categories), len(seed_services))


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )

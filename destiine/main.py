"""
Destiine Travel API

FastAPI entry point. The lifespan wires the booking services and runs the
hold sweeper next to the app; /health reports its heartbeat.
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from destiine.api.routes import auth, bookings, flights, hotels, payments
from destiine.core.config import settings
from destiine.core.database import AsyncSessionLocal
from destiine.core.error_handler import error_body, install_error_handlers
from destiine.core.rate_limit import limiter, rate_limit_exceeded_handler
from destiine.services.registry import build_services

# Register models with SQLAlchemy
from destiine.models import (  # noqa: F401
    User, InventoryUnit, Reservation, ReservationUnit, FlightOfferRecord, HotelOfferRecord
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

MAX_REQUEST_BYTES = 1024 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Services already on app.state (tests) are used as-is
    if getattr(app.state, "services", None) is None:
        app.state.services = await build_services(settings)
    services = app.state.services

    sweeper_task = None
    if settings.HOLD_SWEEP_ENABLED:
        sweeper_task = asyncio.create_task(services.sweeper.run_forever(), name="hold-sweeper")
        logger.info(f"Hold sweeper started (every {settings.HOLD_SWEEP_INTERVAL_SECONDS}s)")
    else:
        logger.info("Hold sweeper disabled")

    yield

    if sweeper_task is not None:
        sweeper_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper_task
        logger.info("Hold sweeper stopped")
    await services.close()


app = FastAPI(
    lifespan=lifespan,
    title="Destiine Travel API",
    description="""
## Destiine Travel Booking API

Flights and hotel rooms are held for a few minutes while the traveller pays.

### Booking flow
1. Search (`/api/flights/search`, `/api/hotels/available-places`)
2. Reserve: the selected seats or rooms are held
3. Create a payment intent for the held reservation
4. The payment webhook confirms the booking, or releases the hold on failure

### Authentication
Reserve, payment and booking endpoints need a bearer token from `/api/auth/login`.
    """,
    version=settings.API_VERSION,
    openapi_tags=[
        {"name": "Health", "description": "Liveness and hold sweeper heartbeat"},
        {"name": "Authentication", "description": "Traveller accounts and tokens"},
        {"name": "Flights", "description": "Flight search, seat maps and seat holds"},
        {"name": "Hotels", "description": "Hotel places, room availability and room holds"},
        {"name": "Payments", "description": "Payment intents and processor webhooks"},
        {"name": "Bookings", "description": "Booking history and cancellation"},
    ],
)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """413 for bodies over MAX_REQUEST_BYTES, judged by Content-Length."""

    async def dispatch(self, request: Request, call_next):
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > MAX_REQUEST_BYTES:
            logger.warning(f"Rejected {declared} byte request to {request.url.path}")
            return JSONResponse(
                status_code=413,
                content=error_body(f"Request body exceeds {MAX_REQUEST_BYTES // 1024} KB", "REQUEST_TOO_LARGE"),
            )
        return await call_next(request)


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_middleware(RequestSizeLimitMiddleware)
install_error_handlers(app)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(flights.router, prefix="/api/flights", tags=["Flights"])
app.include_router(hotels.router, prefix="/api/hotels", tags=["Hotels"])
app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(bookings.router, prefix="/api/bookings", tags=["Bookings"])


@app.get("/", tags=["Health"])
async def root():
    return {"message": "Destiine Travel API", "version": settings.API_VERSION, "status": "operational"}


def uses_database() -> bool:
    return settings.INVENTORY_BACKEND == "database" or settings.CATALOG_BACKEND == "database"


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """503 when the database is in use and does not answer."""
    services = getattr(request.app.state, "services", None)
    report = {
        "status": "healthy",
        "database": "unused",
        "inventory_backend": settings.INVENTORY_BACKEND,
        "hold_sweeper": services.sweeper.heartbeat if services else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if not uses_database():
        return report

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database ping failed: {type(e).__name__}: {e}")
        report.update(status="unhealthy", database=f"error: {type(e).__name__}")
        return JSONResponse(status_code=503, content=report)
    report["database"] = "connected"
    return report

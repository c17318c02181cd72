import asyncio
import logging
from zoneinfo import ZoneInfo
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from workshop_engine.config.settings import settings
from workshop_engine.core.rate_limit import limiter
from workshop_engine.modules.templates import routes as templates_routes
from workshop_engine.modules.slots import routes as slots_routes
from workshop_engine.modules.bookings import routes as bookings_routes
from workshop_engine.modules.pipeline import routes as pipeline_routes

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(templates_routes.router, prefix="/api/v1")
app.include_router(slots_routes.router, prefix="/api/v1")
app.include_router(bookings_routes.router, prefix="/api/v1")
app.include_router(bookings_routes.public_router, prefix="/api/v1")
app.include_router(pipeline_routes.router, prefix="/api/v1")


_background_tasks = set()


@app.on_event("startup")
async def startup_event():
    logger.info(f"Application startup ({settings.environment}, academy timezone {settings.academy_timezone})")
    ZoneInfo(settings.academy_timezone)  # fail fast on a misspelt timezone

    if settings.reminder_scheduler_enabled:
        from workshop_engine.modules.bookings.reminder_scheduler import reminder_scheduler_loop
        task = asyncio.create_task(reminder_scheduler_loop())
        _background_tasks.add(task)
        logger.info(f"Reminder scheduler started - scanning every {settings.reminder_scan_interval_sec}s")
    if not settings.outreach_enabled:
        logger.warning("Twilio credentials not set; outbound WhatsApp messages will be skipped")


@app.on_event("shutdown")
async def shutdown_event():
    for task in _background_tasks:
        task.cancel()
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness check: the record store must be configured"""
    if not settings.supabase_url or not settings.supabase_key:
        return JSONResponse(status_code=503, content={"status": "not ready", "reason": "Supabase is not configured"})
    return {"status": "ready", "outreach_enabled": settings.outreach_enabled}

"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload

The broadcast hub lives in process memory: run a single worker.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import run_health_check
from backend.app.core.database import build_engine, build_session_factory, close_db, init_db

# ── Services ──
from backend.app.alerts.alert_service import AlertWorkflow
from backend.app.alerts.channels.sms_gateway import SmsTransport, build_transport
from backend.app.alerts.sms_dispatcher import SmsDispatcher
from backend.app.emergency_services.directory import EmergencyDirectory
from backend.app.incidents.incident_service import IncidentService
from backend.app.realtime.hub import BroadcastHub
from backend.app.residents.phone_verification import PhoneVerificationService
from backend.app.residents.profile_service import ProfileService
from backend.app.storage.repository import AlertStorage

# ── API routers ──
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.sms_alerts import router as sms_alert_router
from backend.app.api.v1.incidents import router as incident_router
from backend.app.api.v1.villages import router as village_router
from backend.app.api.v1.users import router as user_router
from backend.app.api.v1.emergency_services import router as emergency_service_router
from backend.app.api.v1.realtime import router as realtime_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s] (sms provider: %s)",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        app.state.transport.name,
    )
    if settings.DATABASE_AUTO_CREATE:
        await init_db(app.state.engine)
    yield
    # Shutdown: close sockets, HTTP clients and the pool
    await app.state.hub.close_all()
    await app.state.transport.aclose()
    await close_db(app.state.engine)
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Application factory ──

def create_app(
    database_url: Optional[str] = None,
    transport: Optional[SmsTransport] = None,
) -> FastAPI:
    """
    Build the application and wire its services onto ``app.state``.

    Parameters
    ----------
    database_url : str | None
        Overrides settings.DATABASE_URL (tests pass a SQLite file).
    transport : SmsTransport | None
        Overrides the transport chosen by settings.SMS_PROVIDER.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Village emergency alerting backend. "
            "Admins send in-app alerts scoped to villages, optionally by SMS; "
            "residents get per-user delivery and read receipts; "
            "incidents reported on the map and every alert are pushed "
            "to live clients over WebSocket."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Services ──
    engine = build_engine(database_url)
    storage = AlertStorage(build_session_factory(engine))
    hub = BroadcastHub()
    transport = transport or build_transport(settings)

    app.state.engine = engine
    app.state.storage = storage
    app.state.hub = hub
    app.state.transport = transport
    app.state.workflow = AlertWorkflow(storage, hub, SmsDispatcher(transport))
    app.state.incidents = IncidentService(storage, hub)
    app.state.profiles = ProfileService(storage)
    app.state.phone_verification = PhoneVerificationService(storage, transport)
    app.state.emergency_directory = EmergencyDirectory(storage)

    # ── Middleware stack (order matters — outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(village_router)
    app.include_router(user_router)
    app.include_router(alert_router)
    app.include_router(sms_alert_router)
    app.include_router(incident_router)
    app.include_router(emergency_service_router)
    app.include_router(realtime_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "villages",
                "users",
                "alerts",
                "sms-alerts",
                "emergency-pins",
                "emergency-services",
                "realtime",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(app)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(app)
        if report.status.value == "unhealthy":
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()

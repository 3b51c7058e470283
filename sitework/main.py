import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, SessionLocal, engine
from .errors import DomainError
from .logging import RequestIdMiddleware, setup_logging
from .auth.router import router as auth_router
from .routes.audit import router as audit_router
from .routes.compliance import router as compliance_router
from .routes.deliveries import router as deliveries_router
from .routes.documents import router as documents_router
from .routes.evidence import router as evidence_router
from .routes.hire import router as hire_router
from .routes.inductions import router as inductions_router
from .routes.notifications import router as notifications_router
from .routes.payroll import router as payroll_router
from .routes.projects import router as projects_router
from .routes.retention import router as retention_router
from .routes.signatures import router as signatures_router
from .routes.timesheets import router as timesheets_router
from .routes.users import router as users_router
from .services.reference_data import seed_reference_data
from .services.retention import run_processing
from .services.time_rules import local_today

log = structlog.get_logger(__name__)


async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        log.error("domain_error", code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(DomainError, domain_error_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(projects_router)
    app.include_router(documents_router)
    app.include_router(compliance_router)
    app.include_router(timesheets_router)
    app.include_router(payroll_router)
    app.include_router(deliveries_router)
    app.include_router(hire_router)
    app.include_router(inductions_router)
    app.include_router(evidence_router)
    app.include_router(signatures_router)
    app.include_router(retention_router)
    app.include_router(audit_router)
    app.include_router(notifications_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    # Metrics
    if settings.enable_metrics:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if not settings.auto_create_db:
            return
        Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            seed_reference_data(db)
            summary = run_processing(db, local_today())
            log.info("startup_retention_run", **summary)
        finally:
            db.close()

    return app


app = create_app()

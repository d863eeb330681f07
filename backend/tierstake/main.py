"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException as FastAPIHTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tierstake import __version__
from tierstake.api.errors import register_exception_handlers
from tierstake.api.routes import governance, health, parameters, ranking
from tierstake.core.approval_verifier import AcceptAllVerifier, ApprovalVerifier
from tierstake.core.config import GovernanceConfig, Settings, get_settings
from tierstake.core.database import get_session_local, init_db
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.middleware import LoggingContextMiddleware
from tierstake.services.daily_jobs import DailyJobRunner, DailyJobScheduler
from tierstake.services.parameter_store import ParameterStore

# Configure logging first
LoggingConfig.configure()

logger = LoggingConfig.get_logger(__name__)


def _log_job_failure(job: str, error: Exception) -> None:
    logger.error(f"Scheduled job {job} failed; next tick will run as usual", extra={"job": job})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI app"""
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")

    scheduler: Optional[DailyJobScheduler] = None
    if app.state.manage_database:
        init_db()
        SessionLocal = get_session_local()
        db = SessionLocal()
        try:
            ParameterStore(db).seed_defaults()
        finally:
            db.close()

        if settings.enable_daily_jobs:
            runner = DailyJobRunner(
                SessionLocal,
                on_failure=_log_job_failure,
                settings=settings,
                governance_config=app.state.governance_config,
            )
            scheduler = DailyJobScheduler(
                runner,
                hour=settings.daily_job_hour,
                check_interval_seconds=settings.daily_job_check_interval_seconds,
            )
            await scheduler.start()
    app.state.daily_job_scheduler = scheduler

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    if scheduler is not None:
        await scheduler.stop()


def create_app(
    settings: Optional[Settings] = None,
    governance_config: Optional[GovernanceConfig] = None,
    approval_verifier: Optional[ApprovalVerifier] = None,
    manage_database: bool = True,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use; defaults to the cached environment settings
        governance_config: Approval owners and threshold; built from settings when omitted
        approval_verifier: Signature check for approvals; accepts all by default
        manage_database: Create tables, seed defaults and run the daily scheduler on startup
    """
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        description="Staking participation rankings and governed operating parameters",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.governance_config = governance_config or GovernanceConfig.from_settings(settings)
    app.state.approval_verifier = approval_verifier or AcceptAllVerifier()
    app.state.manage_database = manage_database

    app.add_middleware(LoggingContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log unhandled errors and answer 500"""
        if isinstance(exc, FastAPIHTTPException):
            raise exc
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            extra={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method,
            }
        )
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "detail": "Internal server error"}
        )

    app.include_router(health.router)
    app.include_router(parameters.router)
    app.include_router(governance.router)
    app.include_router(ranking.router)
    return app

"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from habitquest import config
from habitquest.api import metrics_routes
from habitquest.api.routes import router
from habitquest.api.middleware import setup_cors, setup_rate_limiting
from habitquest.db.connection import create_document_store
from habitquest.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    ExternalAPIError,
    HabitQuestError,
    InsightParseError,
    InvalidTransitionError,
    RecordNotFoundError,
    ValidationError,
)
from habitquest.observability.metrics_middleware import setup_metrics_middleware
from habitquest.services import get_container, init_container, reset_container
from habitquest.services.challenge_sweeper import ChallengeSweeper

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES = [
    (ValidationError, 400),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (RecordNotFoundError, 404),
    (InvalidTransitionError, 409),
    (ConflictError, 409),
    (InsightParseError, 502),
    (ExternalAPIError, 502),
    (ConfigurationError, 503),
]


def status_code_for(exc: HabitQuestError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application"""
    # Startup
    logger.info("Starting API server...")
    config.validate_config()
    store = await create_document_store()
    container = init_container(store)
    logger.info("Service container initialized")

    sweeper = None
    if config.SWEEP_INTERVAL_SECONDS > 0:
        sweeper = ChallengeSweeper(container.challenge_service, config.SWEEP_INTERVAL_SECONDS)
        await sweeper.start()

    yield

    # Shutdown
    logger.info("Shutting down API server...")
    if sweeper is not None:
        await sweeper.stop()
    await get_container().close()
    reset_container()
    logger.info("Document store closed")


def create_api_application() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="HabitQuest API",
        description="REST API for gamified habit tracking",
        version="1.0.0",
        lifespan=lifespan
    )

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)
    setup_metrics_middleware(app)

    # Include routes
    app.include_router(router)
    app.include_router(metrics_routes.router)

    @app.exception_handler(HabitQuestError)
    async def habitquest_exception_handler(request: Request, exc: HabitQuestError):
        # Already logged when raised
        return JSONResponse(status_code=status_code_for(exc), content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "InternalServerError", "message": "Internal server error"}
        )

    logger.info("FastAPI application created")

    return app


app = create_api_application()

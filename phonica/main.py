import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from phonica.db.engine import engine
from phonica.errors import PhonicaError, format_validation_errors
from phonica.routers import dashboard, equipment, health, materials, projects, tags, uploads
from phonica.settings import settings

logger = logging.getLogger(__name__)


async def _check_database() -> None:
    """Verify the database is reachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        await _check_database()
        logger.info("Database connection verified")
    except Exception as exc:
        logger.debug("Database connection error: %s", exc)
        raise SystemExit(
            "FATAL: Cannot reach the database. "
            "Check DATABASE_URL and ensure the server is running."
        ) from exc

    logger.info(
        "Audio store: %s (temp: %s, ttl %ds)",
        settings.upload_dir,
        settings.temp_upload_dir,
        settings.temp_file_ttl_seconds,
    )

    yield

    await engine.dispose()


def register_exception_handlers(application: FastAPI) -> None:
    """Render domain errors and request validation failures as ``{error, code}`` JSON."""

    @application.exception_handler(PhonicaError)
    async def phonica_error_handler(request: Request, exc: PhonicaError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc, exc.code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @application.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request",
                "code": "VALIDATION_ERROR",
                "details": format_validation_errors(exc.errors()),
            },
        )

    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "An unexpected error occurred.", "code": "INTERNAL_ERROR"},
        )


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health.router)
    application.include_router(uploads.router, prefix="/api/v1")
    application.include_router(materials.router, prefix="/api/v1")
    application.include_router(tags.router, prefix="/api/v1")
    application.include_router(equipment.router, prefix="/api/v1")
    application.include_router(projects.router, prefix="/api/v1")
    application.include_router(dashboard.router, prefix="/api/v1")

    register_exception_handlers(application)
    return application


app = create_app()

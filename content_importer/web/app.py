"""FastAPI application factory for Content Importer."""

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from content_importer.core.errors import (
    CatalogWriteError,
    ConfigValidationError,
    FetchError,
    JobNotFoundError,
    JobStateError,
    RequestTimeoutError,
    SourceNotFoundError,
)
from content_importer.db.engine import init_db

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

logger = logging.getLogger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    """Map pipeline errors to HTTP responses."""

    @app.exception_handler(ConfigValidationError)
    async def config_error(request: Request, exc: ConfigValidationError) -> JSONResponse:
        return JSONResponse({"error": str(exc), "errors": exc.errors}, status_code=400)

    @app.exception_handler(JobNotFoundError)
    @app.exception_handler(SourceNotFoundError)
    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=404)

    @app.exception_handler(JobStateError)
    async def conflict(request: Request, exc: JobStateError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=409)

    @app.exception_handler(CatalogWriteError)
    async def catalog_error(request: Request, exc: CatalogWriteError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=422)

    @app.exception_handler(FetchError)
    async def fetch_error(request: Request, exc: FetchError) -> JSONResponse:
        status_code = 504 if isinstance(exc, RequestTimeoutError) else 502
        logger.warning(f"Upstream fetch failed for {request.url.path}: {exc}")
        return JSONResponse({"error": str(exc), "url": exc.url}, status_code=status_code)


def create_app(initialize_db: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Content Importer",
        description="Selector-driven import of articles and products from external websites",
        version="0.1.0",
    )

    # Initialize database tables
    if initialize_db:
        init_db()

    _register_error_handlers(app)

    # Include routers (import here to avoid circular imports)
    from content_importer.web.routes import crawler

    app.include_router(crawler.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app

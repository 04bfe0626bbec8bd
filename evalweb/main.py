"""
evaldash Web Service - backend for the evaluation dashboard

A FastAPI application that converts spreadsheet datasets to JSONL, exports
reviewed annotations, and proxies the external evaluation service for the
dashboard (datasets, evals, runs, annotations, labels).

Usage:
    # Local mode
    python -m evalweb.main

    # Or via entry point (after pip install -e .)
    evaldash

    # Network accessible
    evaldash --host 0.0.0.0 --port 3001

    # Debug mode (verbose logging) - shows requests, external calls, conversions
    evaldash --debug

    # Or via environment variable:
    EVALDASH_DEBUG=1 evaldash

    # Toggle debug at runtime via API:
    POST /api/debug/toggle
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from evalcore import __version__
from evalcore.client import ExternalServiceError, InvalidRequestError, MissingApiKeyError
from evalcore.config import ConfigurationError, Settings, get_settings
from evalcore.converter import ConversionError, UnsupportedFormatError
from evalcore.logging_config import get_logger, is_debug_mode, set_debug_mode, setup_logging
from evalcore.session import SessionError, SessionStore
from evalweb.routers import evals, files, labels

log = get_logger("main")


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def register_error_handlers(app: FastAPI) -> None:
    """Every failure leaves the service as {"success": false, "message": ...}."""

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid request: {location} {first.get('msg', '')}".strip()
        return error_response(400, message)

    @app.exception_handler(ExternalServiceError)
    async def external_error(request: Request, exc: ExternalServiceError):
        # Upstream client errors are passed through, everything else is a bad gateway
        status = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 502
        log.warning(f"{request.method} {request.url.path} -> {status}: {exc.message}")
        return error_response(status, exc.message)

    @app.exception_handler(MissingApiKeyError)
    async def missing_key_error(request: Request, exc: MissingApiKeyError):
        return error_response(401, str(exc))

    @app.exception_handler(SessionError)
    async def session_error(request: Request, exc: SessionError):
        return error_response(400, str(exc))

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_error(request: Request, exc: InvalidRequestError):
        return error_response(400, str(exc))

    @app.exception_handler(UnsupportedFormatError)
    async def unsupported_format_error(request: Request, exc: UnsupportedFormatError):
        return error_response(400, str(exc))

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        log.error(f"Configuration problem: {exc}")
        return error_response(500, str(exc))

    @app.exception_handler(ConversionError)
    async def conversion_error(request: Request, exc: ConversionError):
        log.error(f"Conversion failed: {exc}")
        return error_response(500, str(exc))

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        log.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return error_response(500, "Internal server error")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; tests pass their own Settings."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        log.info("=" * 60)
        log.info("  evaldash Web Service Starting...")
        log.info("=" * 60)
        log.info(f"  External API: {settings.external_api.base_url}")
        log.info(f"  Translation:  {settings.translation.provider}")
        log.info(f"  Temp dir:     {settings.conversion.temp_path()}")
        log.info(f"  Debug mode:   {'ON' if is_debug_mode() else 'OFF'}")
        log.info("=" * 60)
        yield
        log.info("evaldash Web Service shutting down...")

    app = FastAPI(
        title="evaldash",
        description="Evaluation dashboard backend: dataset conversion, runs and annotation review",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sessions = SessionStore(
        max_idle=timedelta(hours=settings.server.session_expire_hours),
        max_sessions=settings.server.max_sessions,
    )

    # The dashboard frontend is served from another origin in development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Rows-Written", "X-Rows-Skipped"],
    )

    app.include_router(files.router, prefix="/api/v1/files", tags=["files"])
    app.include_router(evals.router, prefix="/api", tags=["evals"])
    app.include_router(labels.router, prefix="/api/labels", tags=["labels"])
    register_error_handlers(app)

    @app.get("/health")
    def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "version": __version__, "debug": is_debug_mode()}

    @app.get("/api/settings")
    def show_settings():
        """Effective configuration with API keys masked."""
        return app.state.settings.to_dict()

    @app.get("/api/debug/status")
    def debug_status():
        app.state.sessions.prune()
        return {
            "debug_mode": is_debug_mode(),
            "config_path": str(settings.config_path) if settings.config_path else None,
            "temp_dir": str(settings.conversion.temp_path()),
            "active_sessions": len(app.state.sessions),
        }

    @app.post("/api/debug/toggle")
    def toggle_debug():
        """Toggle debug mode at runtime."""
        new_state = not is_debug_mode()
        set_debug_mode(new_state)
        log.info(f"Debug mode {'enabled' if new_state else 'disabled'}")
        return {"debug_mode": new_state}

    return app


app = create_app()


# ============================================================================
# CLI Entry Point
# ============================================================================

def main():
    """CLI entry point for the evaldash command."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="evaldash Web Service - evaluation dashboard backend"
    )
    parser.add_argument(
        "--host",
        default=settings.server.host,
        help=f"Host to bind to (default: {settings.server.host}, use 0.0.0.0 for network)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.server.port,
        help=f"Port to bind to (default: {settings.server.port}, also: PORT)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode with verbose logging (also: set EVALDASH_DEBUG=1)"
    )

    args = parser.parse_args()
    args.debug = args.debug or settings.logging.debug

    setup_logging(
        debug=args.debug,
        log_to_file=settings.logging.enabled,
        log_dir=settings.logging.directory,
    )

    print("\n" + "=" * 60)
    print(f"  evaldash {__version__}")
    print(f"  URL:          http://{'localhost' if args.host == '127.0.0.1' else args.host}:{args.port}")
    print(f"  External API: {settings.external_api.base_url}")
    print(f"  Translation:  {settings.translation.provider}")
    if args.debug:
        print("  Debug:        ENABLED (verbose logging)")
    print("=" * 60 + "\n")

    log_level = "debug" if args.debug else "info"

    uvicorn.run(
        "evalweb.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .logging_setup import setup_logging
from .middleware import (
    APIKeyMiddleware,
    BodySizeLimitMiddleware,
    BodyTooLarge,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    body_too_large_response,
)
from .routers import db as db_router
from .schemas import HealthResponse
from .services.mongo import CollectionBinder, ConnectionManager
from .utils import format_date


def create_app(settings: Optional[Settings] = None, conn_mgr: Optional[ConnectionManager] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logger = setup_logging(settings.log_level, settings.log_dir)
    conn_mgr = conn_mgr or ConnectionManager(settings.mongodb_uri, settings.server_selection_timeout_ms)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Gateway starting")
        yield
        conn_mgr.close()
        # handles point at the closed client
        app.state.binder.clear()
        logger.info("Gateway stopped")

    app = FastAPI(title="Document Gateway", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.conn_mgr = conn_mgr
    app.state.binder = CollectionBinder(conn_mgr)

    # Innermost first: the last middleware added runs first.
    if settings.auth_enabled:
        app.add_middleware(APIKeyMiddleware, api_key=settings.api_key, api_secret=settings.api_secret,
                           trusted_proxies=settings.trusted_proxies)
    else:
        logger.warning("API_KEY/API_SECRET not set, requests are not authenticated")
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_max,
        window_ms=settings.rate_limit_window_ms,
        message=settings.rate_limit_message,
        trusted_proxies=settings.trusted_proxies,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(BodyTooLarge)
    async def body_too_large_handler(request: Request, exc: BodyTooLarge):
        return body_too_large_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        parts = []
        for err in errors:
            loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
        return JSONResponse(status_code=400, content={"success": False, "message": "; ".join(parts) or "Invalid request body"})

    # Routers
    app.include_router(db_router.router, prefix="/api")

    @app.get("/health", response_model=HealthResponse)
    def health():
        return {"status": "OK", "timestamp": format_date(datetime.now(timezone.utc))}

    return app


def run() -> None:
    settings = Settings.from_env()
    uvicorn.run(
        "docgate.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()

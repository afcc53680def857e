import logging
import math
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, JSONResponse

from .config import Settings
from .db import make_engine, make_session_factory, ensure_tables
from .errors import ShortCodeNotFound, QRCodeExpired, QRCodeInactive, RateLimited, ShortCodeExhausted
from .pipeline import build_pipeline, RedirectPipeline
from .qrcode_redirect import router as redirect_router
from .routes_admin import router as admin_router
from .routes_qr import router as qr_router
from .utils import now_ms

logger = logging.getLogger("qrpulse")


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def register_exception_handlers(app: FastAPI):

    @app.exception_handler(RateLimited)
    async def rate_limited_handler(request: Request, exc: RateLimited):
        result = exc.result
        retry_after = max(0, math.ceil((result.reset_time - now_ms()) / 1000))
        logger.info(f"Rate limited {request.url.path} (limit {result.limit})")
        return PlainTextResponse(
            "Rate limit exceeded",
            status_code=429,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": str(result.remaining),
                "X-RateLimit-Reset": str(result.reset_time),
            },
        )

    @app.exception_handler(ShortCodeNotFound)
    async def not_found_handler(request: Request, exc: ShortCodeNotFound):
        return PlainTextResponse("QR code not found", status_code=404)

    @app.exception_handler(QRCodeExpired)
    async def expired_handler(request: Request, exc: QRCodeExpired):
        return PlainTextResponse("QR code has expired", status_code=410)

    @app.exception_handler(QRCodeInactive)
    async def inactive_handler(request: Request, exc: QRCodeInactive):
        return PlainTextResponse("QR code is inactive", status_code=403)

    @app.exception_handler(ShortCodeExhausted)
    async def exhausted_handler(request: Request, exc: ShortCodeExhausted):
        logger.error(f"Short code generation failed at {request.url}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Could not allocate a short code"})

    @app.exception_handler(Exception)
    async def internal_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error at {request.url}: {exc}", exc_info=exc)
        if request.url.path.startswith("/q/"):
            return PlainTextResponse("Internal server error", status_code=500)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(settings: Optional[Settings] = None, pipeline: Optional[RedirectPipeline] = None,
               engine=None) -> FastAPI:
    """Build the application. Tests pass their own settings, engine or pipeline."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    engine = engine or make_engine(settings.database_url)
    session_factory = make_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_tables(engine)
        logger.info("Database tables ready")
        yield
        engine.dispose()

    app = FastAPI(title="QRPulse API", lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.pipeline = pipeline or build_pipeline(settings, session_factory)

    register_exception_handlers(app)
    app.include_router(qr_router)
    app.include_router(redirect_router)
    app.include_router(admin_router)

    @app.get("/health")
    def health_check():
        return {
            "status": "ok",
            "rate_limit_backend": "redis" if settings.redis_url else "memory",
            "geoip_enabled": settings.geoip_enabled,
        }

    return app

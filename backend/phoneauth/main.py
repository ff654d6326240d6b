"""
FastAPI application for phone OTP authentication
"""
import logging
import sys
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Environment must be loaded before settings are read
load_dotenv()

from fastapi import FastAPI

from . import __version__
from .core.config import settings, validate_config
from .core.sentry import init_sentry
from .exception_handlers import register_exception_handlers
from .middleware.request_id import RequestIDMiddleware
from .routers import auth

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("phoneauth")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"[STARTUP] phoneauth {__version__} starting, ENV={settings.ENV}")
    validate_config()
    init_sentry()
    yield
    logger.info("[SHUTDOWN] phoneauth stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="phoneauth", version=__version__, lifespan=lifespan)
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)
    app.include_router(auth.router)

    @app.get("/healthz")
    async def healthz():
        """Liveness check. Never touches the database."""
        return {"ok": True, "service": "phoneauth", "version": __version__}

    return app


app = create_app()

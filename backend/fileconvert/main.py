# FILE: backend/fileconvert/main.py
# APP FACTORY & ROUTER REGISTRATION
# 1. Conversion errors map to {message, error} with the status their class declares.
# 2. Request validation problems are 400s, never 422s.

import logging
from typing import Optional

import structlog
from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import Settings, settings as default_settings
from .core.exceptions import ConversionError
from .core.lifespan import lifespan

# --- Router Imports ---
from .api.endpoints.convert import router as convert_router
from .api.endpoints.conversions import router as conversions_router

logger = logging.getLogger(__name__)


def configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConversionError)
    async def conversion_error_handler(request: Request, exc: ConversionError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.message, "error": exc.__class__.__name__},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "Invalid request data", "error": "RequestValidationError"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Internal server error", "error": exc.__class__.__name__},
        )


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or default_settings
    configure_logging(app_settings.LOG_LEVEL)

    app = FastAPI(title=app_settings.PROJECT_NAME, lifespan=lifespan)
    app.state.settings = app_settings

    # --- MIDDLEWARE ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    register_exception_handlers(app)

    # --- ROUTER ASSEMBLY ---
    api_router = APIRouter(prefix=app_settings.API_PREFIX)
    api_router.include_router(convert_router)
    api_router.include_router(conversions_router, prefix="/conversions")
    app.include_router(api_router)

    return app


app = create_app()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from backend.app.api.v1.router import api_router
from backend.app.core.clock import utcnow
from backend.app.core.config import DEV_SECRET_KEY, settings
from backend.app.core.errors import ExstagiumError, InvalidInput
from backend.app.core.logging import configure_logging
from backend.app.db import init_models

logger = logging.getLogger(__name__)


# --- LIFESPAN: create tables when the server starts ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_models()
    if settings.is_production and settings.SECRET_KEY == DEV_SECRET_KEY:
        logger.warning("SECRET_KEY is the development default; bearer tokens can be forged")
    logger.info("%s %s started (%s)", settings.PROJECT_NAME, settings.PROJECT_VERSION, settings.ENVIRONMENT)
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        description="Zero-knowledge vault: all encryption happens client-side.",
        openapi_url=None if settings.is_production else f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )

    # Web client, browser extension and mobile app origins
    if settings.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.BACKEND_CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(ExstagiumError)
    async def handle_domain_error(request: Request, exc: ExstagiumError):
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        # Field-level detail is not returned; only the kind is stable
        return JSONResponse(status_code=InvalidInput.status_code, content=InvalidInput().to_dict())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=ExstagiumError().to_dict())

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/")
    def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME} Secure Vault API"}

    @app.get("/health")
    def health():
        return {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "version": settings.PROJECT_VERSION,
        }

    return app


app = create_app()

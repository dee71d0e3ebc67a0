import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
import uvicorn

from app.api.endpoints import (
    auth,
    escrows,
    health,
)
from app.core.config import settings
from app.core.errors import AppError, ServiceUnavailable
from app.db.session import init_db

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    init_db()
    logger.info("%s %s started", settings.PROJECT_NAME, settings.VERSION)
    if not settings.get_arbitrator_wallets():
        logger.warning("ARBITRATOR_WALLETS is empty, disputes cannot be resolved")
    yield
    logger.info("%s shutting down", settings.PROJECT_NAME)


# Define the FastAPI application instance
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(error: AppError) -> JSONResponse:
    headers = {"Retry-After": "1"} if error.retryable else None
    if error.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.detail, "error": error.kind},
        headers=headers,
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_errors(exc), "error": "validation_error"},
    )


@app.exception_handler(OperationalError)
@app.exception_handler(PoolTimeoutError)
async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s storage error: %s", request.method, request.url.path, exc)
    return _error_response(ServiceUnavailable())


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


# Include your API routers
app.include_router(health.router)
app.include_router(auth.router, prefix="/auth")
app.include_router(escrows.router, prefix="/escrows")


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )

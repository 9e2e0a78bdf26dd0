import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import router
from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.exceptions import PipelineError
from app.core.exceptions import PromptTooLargeError
from app.core.logging import setup_logging
from app.services.pipeline import build_pipeline

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Tests may install their own pipeline before startup
    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = build_pipeline(settings)
    logger.info("Application startup - analysis pipeline ready (storage: %s)", settings.storage_backend)
    yield


app = FastAPI(title="Consultation Analysis API", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.error(f"HTTP exception: {exc.detail} (status: {exc.status_code})")
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    # Log the detailed Pydantic validation errors to the server console
    logger.error("Request validation failed: %s", exc.errors(), exc_info=False)
    return JSONResponse(
        {"error": "Input validation failed", "details": exc.errors()},
        status_code=422,
    )


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(_request: Request, exc: NotFoundError) -> JSONResponse:
    logger.warning(f"Not found: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=404)


@app.exception_handler(PromptTooLargeError)
async def prompt_too_large_exception_handler(_request: Request, exc: PromptTooLargeError) -> JSONResponse:
    logger.error(f"Prompt too large: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=413)


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(_request: Request, exc: PipelineError) -> JSONResponse:
    logger.error(f"Pipeline error: {str(exc)}")
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    logger.info("Health check endpoint called")
    return {"status": "ok"}


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)
app.include_router(router)

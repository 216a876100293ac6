import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .api.chat import router as chat_router
from .api.documents import router as documents_router
from .config import get_settings
from .errors import CourseAssistantError, RateLimitedError
from .logging_config import configure_logging
from .services import ServiceContainer, get_services, shutdown_services

configure_logging(get_settings().log_dir)

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    services = get_services()
    await services.startup()
    LOGGER.info("Course assistant started")
    try:
        yield
    finally:
        await shutdown_services()
        LOGGER.info("Course assistant stopped")


app = FastAPI(title="Course Assistant API", lifespan=lifespan)
app.include_router(documents_router)
app.include_router(chat_router)


@app.exception_handler(CourseAssistantError)
async def _handle_domain_error(request: Request, exc: CourseAssistantError) -> JSONResponse:
    if exc.status_code >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        LOGGER.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc)
    headers = exc.headers() if isinstance(exc, RateLimitedError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code},
        headers=headers,
    )


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck(services: ServiceContainer = Depends(get_services)) -> str:
    if services.worker.closed:
        raise HTTPException(status_code=503, detail="ingestion worker is stopped")
    return "ok"


@app.get("/healthz/model")
def model_healthcheck(services: ServiceContainer = Depends(get_services)) -> dict[str, object]:
    status = services.provider.status()
    return {
        "provider": status.provider,
        "ready": status.ready,
        "error": status.error,
        "chat_model": services.settings.chat_model,
    }

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from reminder_service.core.config import settings
from reminder_service.db.session import init_db
from reminder_service.reminders.api import router as reminders_router
from reminder_service.reminders.errors import (
    DatabaseCorruptedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    ReminderServiceError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFoundError: 404,
    InvalidInputError: 400,
    InvalidTransitionError: 400,
    DatabaseCorruptedError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting up {settings.PROJECT_NAME}...")
    init_db()
    yield
    logger.info(f"Shutting down {settings.PROJECT_NAME}...")


async def reminder_service_error_handler(request: Request, exc: ReminderServiceError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.add_exception_handler(ReminderServiceError, reminder_service_error_handler)
    app.include_router(reminders_router, prefix=settings.API_V1_STR, tags=["reminders"])
    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)

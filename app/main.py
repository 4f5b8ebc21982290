from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from prometheus_fastapi_instrumentator import Instrumentator

from app.config import Settings
from app.controllers import v1
from app.db import init_db
from app.dependencies import Services, error_response
from app.errors import ErrorKind, ServiceError
from app.logger import setup_logging

settings = Settings()
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await asyncio.to_thread(init_db, settings)
    if not settings.replicate_api_token:
        logger.error("REPLICATE_API_TOKEN is not set; background removal is disabled")
    services = getattr(app.state, "services", None)
    if services is None:
        services = Services.build(settings)
        app.state.services = services
    yield
    await services.aclose()


app = FastAPI(
    title="AI Background Remover API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(v1.router)


@app.exception_handler(ServiceError)
async def _service_error_handler(request: Request, exc: ServiceError):
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    message = "; ".join(e.get("msg", "") for e in exc.errors()) or None
    return error_response(ServiceError(ErrorKind.INVALID_INPUT, message))


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(ServiceError(ErrorKind.INTERNAL_ERROR))


Instrumentator().instrument(app).expose(app)

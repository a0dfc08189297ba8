import time
import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from counselbook.core.config import settings
from counselbook.core.logging import setup_logging, request_id_ctx
from counselbook.core.errors import DomainError
from counselbook.api.router import api_router
from counselbook.core.db import init_models
from counselbook.modules.events.outbox import run_outbox_relay
from counselbook.platform.provider_registry import registry

setup_logging()
app = FastAPI(title=settings.APP_NAME)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "not_found": 404,
    "conflict": 409,
    "forbidden": 403,
    "invalid_input": 400,
    "internal": 500,
}

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id", "-")
    token = request_id_ctx.set(rid)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx.reset(token)
    if rid != "-":
        response.headers["x-request-id"] = rid
    return response

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    status_code = ERROR_STATUS.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{exc.kind} for {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} for {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "internal", "message": "An internal server error occurred."},
    )

@app.on_event("startup")
async def on_startup():
    await init_models()
    if settings.OUTBOX_RELAY_ENABLED:
        app.state.outbox_task = asyncio.create_task(run_outbox_relay())

@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await registry.close()


app.include_router(api_router, prefix=settings.API_PREFIX)

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.controllers import api
from app.db import init_db
from app.dependencies import ErrorResponse, get_settings
from app.logger import setup_logging
from app.models import ErrorCode

setup_logging()
logger = logging.getLogger(__name__)

# request locations FastAPI prepends to validation error paths
_LOCATIONS = {"query", "body", "path", "header", "cookie"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await asyncio.to_thread(init_db, get_settings())
    yield


app = FastAPI(
    title="Intrend API",
    version="0.4.0",
    lifespan=lifespan,
)

app.include_router(api.router)


def _error(status_code: int, code: ErrorCode, message: str) -> JSONResponse:
    err = ErrorResponse(code=code, message=message)
    return JSONResponse(status_code=status_code, content={"detail": err.model_dump()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(p) for p in first.get("loc", ())]
    if loc and loc[0] in _LOCATIONS:
        loc = loc[1:]
    field = ".".join(loc)
    if first.get("type") == "missing":
        message = f"Missing required field: {field}"
    else:
        message = f"Invalid field {field}: {first.get('msg', 'invalid value')}"
    return _error(400, ErrorCode.BAD_REQUEST, message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, ErrorCode.INTERNAL_ERROR, str(exc) or "Internal server error")


Instrumentator().instrument(app).expose(app)

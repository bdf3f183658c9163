from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import ApiError, ErrorKind, STATUS_BY_KIND, kind_for_status
from .routes import alerts as alert_routes
from .routes import children as children_routes
from .routes import invites as invite_routes
from .supabase import SupabaseError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="FamilySafe API",
    version="0.1.0",
    description="Invites and links child accounts, and serves the parent dashboard feeds",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    allow_credentials=False,
)

app.include_router(invite_routes.router)
app.include_router(children_routes.router)
app.include_router(alert_routes.router)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"errorKind": kind_for_status(exc.status_code).value, "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=STATUS_BY_KIND[ErrorKind.INVALID_ARGUMENT],
        content={
            "errorKind": ErrorKind.INVALID_ARGUMENT.value,
            "message": "; ".join(problems) or "Invalid request.",
        },
    )


@app.exception_handler(SupabaseError)
async def supabase_error_handler(request: Request, exc: SupabaseError) -> JSONResponse:
    logger.warning(
        "unclassified supabase failure",
        extra={"path": request.url.path, "action": exc.action, "status": exc.status_code},
    )
    return JSONResponse(
        status_code=STATUS_BY_KIND[ErrorKind.UPSTREAM_ERROR],
        content={"errorKind": ErrorKind.UPSTREAM_ERROR.value, "message": exc.message},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=STATUS_BY_KIND[ErrorKind.UPSTREAM_ERROR],
        content={
            "errorKind": ErrorKind.UPSTREAM_ERROR.value,
            "message": "Unexpected server error. Please try again.",
        },
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from playplan.config import settings
from playplan.db.session import init_db
from playplan.routers import generate, health, institutions, pilot_tokens
from playplan.services.domain_config import load_domain_config
from playplan.services.errors import ApiError, ErrorCode

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "DENY",
    "referrer-policy": "no-referrer",
    "permissions-policy": "geolocation=(), camera=(), microphone=()",
    "cross-origin-resource-policy": "same-site",
}


def status_for(code: ErrorCode) -> int:
    if code is ErrorCode.REQUEST_INVALID:
        return 400
    if code in (
        ErrorCode.TOKEN_MISSING,
        ErrorCode.TOKEN_INVALID,
        ErrorCode.TOKEN_EXPIRED,
        ErrorCode.TOKEN_REVOKED,
        ErrorCode.ADMIN_UNAUTHORIZED,
    ):
        return 401
    if code is ErrorCode.RATE_LIMITED:
        return 429
    return 500


def error_response(code: ErrorCode, message: str, retryable: bool) -> JSONResponse:
    return JSONResponse(
        {"error": {"code": code.value, "message": message, "retryable": retryable}},
        status_code=status_for(code),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.log_level)
    load_domain_config()
    await init_db()
    yield


app = FastAPI(title="PlayPlan", version="0.1.0", lifespan=lifespan)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type", "x-request-id", "x-admin-key"],
    )


@app.middleware("http")
async def add_request_headers(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    logger.info("Request %s %s (%s)", request.method, request.url.path, request_id)
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return error_response(exc.code, exc.message, exc.retryable)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    message = " ".join(str(error.get("msg", "")) for error in exc.errors()).strip()
    return error_response(ErrorCode.REQUEST_INVALID, message or "Invalid request.", False)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return error_response(ErrorCode.UNKNOWN_ERROR, "Unexpected error while handling request.", False)


app.include_router(health.router)
app.include_router(generate.router)
app.include_router(institutions.router)
app.include_router(pilot_tokens.router)

# app.py - FastAPI application: wiring, middleware, error envelope, health
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from account_routes import account_router
from config import settings
from config.constants import APP_VERSION, REQUEST_ID_HEADER
from database import SessionLocal, db_call, init_db, ping
from debug_log import DebugLogBuffer, DebugLogHandler, RequestIdFilter, request_id_var
from duration_manager import DurationManager
from errors import ServiceError
from job_routes import job_router
from job_service import JobService
from public_routes import public_router
from prompt_improver import PromptImprover
from rate_limiter import SlidingWindowRateLimiter
from speech_synthesis import SpeechSynthesisAdapter
from storage import StorageGateway
from track_routes import track_router

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(rid)s] %(message)s'


def configure_logging():
    logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())


configure_logging()
logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    400: "INVALID_INPUT",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "INVALID_STATE",
    429: "RATE_LIMITED",
}


def error_response(status_code: int, code: str, message: str, headers: Optional[dict] = None,
                   **extra) -> JSONResponse:
    body = {"ok": False, "error": code, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = HTTP_ERROR_CODES.get(exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "ERROR")
        return error_response(exc.status_code, code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid input")
        return error_response(400, "INVALID_INPUT", message)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return error_response(500, "INTERNAL_ERROR", "Internal server error")


def create_app(
    storage: Optional[StorageGateway] = None,
    synthesizer=None,
    duration_detector=None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    debug_buffer: Optional[DebugLogBuffer] = None,
    prompt_improver: Optional[PromptImprover] = None,
    create_schema: bool = True,
) -> FastAPI:
    """
    Build the application. Collaborators default to the configured ones and
    can be swapped for fakes in tests.
    """
    storage = storage or StorageGateway.from_settings()
    synthesizer = synthesizer or SpeechSynthesisAdapter()
    duration_detector = duration_detector if duration_detector is not None else DurationManager()
    debug_buffer = debug_buffer or DebugLogBuffer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ============================================================
        # STARTUP PHASE
        # ============================================================
        debug_handler = DebugLogHandler(debug_buffer)
        debug_handler.addFilter(RequestIdFilter())
        logging.getLogger().addHandler(debug_handler)

        if create_schema:
            logger.info("Ensuring database schema...")
            init_db()

        await storage.start()
        logger.info(f"Service ready: storage={storage.backend_name} environment={settings.ENVIRONMENT}")
        try:
            yield
        finally:
            # ============================================================
            # SHUTDOWN PHASE
            # ============================================================
            await storage.close()
            logging.getLogger().removeHandler(debug_handler)
            logger.info("Service stopped")

    app = FastAPI(title="SoftVibe API", version=APP_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", REQUEST_ID_HEADER],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response

    register_exception_handlers(app)

    app.state.storage = storage
    app.state.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
    app.state.debug_log = debug_buffer
    app.state.prompt_improver = prompt_improver or PromptImprover()
    app.state.job_service = JobService(storage, synthesizer, duration_detector)

    @app.get("/health")
    async def health():
        db = SessionLocal()
        try:
            db_ok = await db_call(ping, db)
        finally:
            db.close()
        return {
            "ok": db_ok,
            "service": "softvibe-api",
            "version": APP_VERSION,
            "storage": storage.backend_name,
            "database": "ok" if db_ok else "unreachable",
        }

    app.include_router(job_router)
    app.include_router(track_router)
    app.include_router(public_router)
    app.include_router(account_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host=settings.HOST, port=settings.PORT, reload=settings.is_development)

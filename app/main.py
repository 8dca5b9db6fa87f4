import asyncio
import logging
import os
from dotenv import load_dotenv  # load .env variables

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from sqlalchemy.exc import DBAPIError, OperationalError

import app.database as database
from app.constants import Messages
from app.errors import AppError, ValidationFailedError
from app.utils import envelope

# ----- Load environment variables -----
load_dotenv()

# ----- Logging -----
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("kp")

# ----- Routers -----
from app.routes.admin import router as admin_router
from app.routes.files import router as files_router
from app.routes.response_letters import router as response_letter_router
from app.routes.submissions import router as submission_router
from app.routes.teams import router as team_router
from app.routes.templates import router as template_router

# ----- FastAPI app -----
app = FastAPI(
    title="KP Backend",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# ----- CORS (enabled only if ALLOWED_ORIGINS is set) -----
raw_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
if raw_origins:
    allowed_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"
        ],
        expose_headers=["Content-Disposition"],
        max_age=86400,
    )

# ----- Include routers -----
app.include_router(team_router)
app.include_router(submission_router)
app.include_router(admin_router)
app.include_router(response_letter_router)
app.include_router(template_router)
app.include_router(files_router)


# ----- Error envelopes -----
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    body = envelope(exc.message, success=False)
    body["code"] = exc.code
    if isinstance(exc, ValidationFailedError) and exc.errors:
        body["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    body = envelope(Messages.VALIDATION_FAILED, success=False)
    body["code"] = ValidationFailedError.code
    body["errors"] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    message = exc.detail if isinstance(exc.detail, str) else Messages.INTERNAL_SERVER_ERROR
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(message, success=False),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = envelope(Messages.INTERNAL_SERVER_ERROR, success=False)
    body["code"] = AppError.code
    return JSONResponse(status_code=500, content=body)


@app.on_event("startup")
async def on_startup():
    """Ensure database connectivity with simple retry logic."""

    max_attempts = int(os.getenv("DB_INIT_MAX_ATTEMPTS", "10"))
    base_delay = float(os.getenv("DB_INIT_RETRY_SECONDS", "1.0"))

    attempt = 0

    def sqlite_fallback_allowed() -> bool:
        configured = os.getenv("DB_ALLOW_SQLITE_FALLBACK")
        if configured is not None:
            return configured.lower() in {"1", "true", "yes", "on"}
        return database.CURRENT_DATABASE_URL == database.DEFAULT_SQLITE_URL

    while True:
        attempt += 1
        try:
            await database.init_models()
        except (OperationalError, DBAPIError, OSError) as exc:  # pragma: no cover - depends on timing
            if attempt >= max_attempts:
                if sqlite_fallback_allowed() and (
                    database.CURRENT_DATABASE_URL != database.DEFAULT_SQLITE_URL
                ):
                    logger.error(
                        "Database (%s) not reachable after %s attempts: %s."
                        " Falling back to local SQLite for development.",
                        database.engine.dialect.name,
                        attempt,
                        exc,
                    )
                    await database.engine.dispose()
                    database.configure_engine(database.DEFAULT_SQLITE_URL)
                    attempt = 0
                    continue

                logger.exception("Database not reachable after %s attempts", attempt)
                raise

            wait_time = base_delay * min(2 ** (attempt - 1), 8)
            logger.warning(
                "Database not ready (attempt %s/%s): %s. Retrying in %.1f seconds...",
                attempt,
                max_attempts,
                exc,
                wait_time,
            )
            await asyncio.sleep(wait_time)
        else:
            logger.info(
                "KP backend API started and database tables ensured (dialect %s).",
                database.engine.dialect.name,
            )
            break


# ----- Health check endpoint -----
@app.get("/health", tags=["meta"])
async def health():
    return {"ok": True}


# ----- Shutdown: release pooled connections -----
@app.on_event("shutdown")
async def on_shutdown():
    await database.engine.dispose()

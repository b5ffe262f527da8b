import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from verse_memory.config import get_settings
from verse_memory.database import Base, engine
from verse_memory.errors import SchedulingError, ValidationError, InternalError
from verse_memory.memory.routes import router as memory_router

# Import models so SQLAlchemy can create tables
from verse_memory.memory import models  # noqa: F401

settings = get_settings()
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup: Create database tables
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        # Don't crash the app - let it start and handle errors per-request
    yield
    logger.info("Application shutting down")


app = FastAPI(
    title="Verse Memory Scheduler API",
    description="Spaced repetition scheduling and practice streaks for memory verses",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(error: SchedulingError) -> JSONResponse:
    """Structured error body; never carries stack traces or internals."""
    return JSONResponse(
        status_code=error.status_code,
        headers=error.headers,
        content={
            "success": False,
            "error": {
                "code": error.code,
                "message": error.message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        },
    )


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"{location}: {errors[0].get('msg', 'invalid value')}" if location else errors[0].get("msg", message)
    return error_response(ValidationError(message))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(InternalError("An unexpected error occurred"))


app.include_router(memory_router)


@app.get("/")
async def root():
    return {"message": "Verse Memory Scheduler API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}

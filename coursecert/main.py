from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from coursecert.api.v1.routes import router as api_v1_router
from coursecert.core.config import settings
from coursecert.core.error_handling import (
    ApplicationError, application_error_handler, error_handler, http_exception_handler,
    validation_exception_handler, generic_exception_handler
)
from coursecert.core.logging_config import setup_logging, RequestLoggingMiddleware
from coursecert.core.metrics import collector
from coursecert.db.session import create_schema


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.db_auto_create:
        await create_schema()
    yield


setup_logging()
error_handler.development_mode = settings.debug

app = FastAPI(
    title="Course Certification Interview API",
    version="1.0.0",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    lifespan=lifespan,
)

app.add_exception_handler(ApplicationError, application_error_handler)  # type: ignore[arg-type]
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(ValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, generic_exception_handler)  # type: ignore[arg-type]

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
for o in settings.cors_allowed_origins:
    if o not in origins:
        origins.append(o)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=86400,
)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/healthz", tags=["health"])
def healthcheck():
    return {"status": "ok", **collector.snapshot()}


# Versioned API
app.include_router(api_v1_router, prefix="/api/v1")

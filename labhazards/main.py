"""
FastAPI application entrypoint.

Run locally:  uvicorn labhazards.main:app --reload
Scheduled jobs: see ``labhazards-jobs --help``
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from labhazards.api.partners import router as partners_router
from labhazards.api.routes import router
from labhazards.config import settings
from labhazards.errors import LHDError
from labhazards.models.database import Base, engine

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Lab Hazards Permits API",
    description=(
        "Chemical authorizations and dispensations: creation, renewal, "
        "expiry and partner-system integration."
    ),
    version="1.0.0",
)

app.include_router(router, prefix="/api/v1")
app.include_router(partners_router)


@app.exception_handler(LHDError)
def handle_lhd_error(request: Request, exc: LHDError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s refused (%d): %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content={"Message": str(exc)})


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"Message": "Internal server error"})


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)

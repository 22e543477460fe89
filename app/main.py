# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.exceptions import DropAllocationError
from app.core.limiter import limiter
from app.core.seed import seed_authority
from app.scheduler import init_scheduler, shutdown_scheduler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    # The seed must exist before the first join or claim is served
    app.state.seed_authority = seed_authority
    seed_authority.generate()

    if settings.SCHEDULER_ENABLED:
        init_scheduler()

    yield

    logger.info("Application shutting down...")
    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()


app = FastAPI(
    title="Dropspot Allocation Service",
    version="1.0.0",
    description="""
        **Dropspot Drop Allocation Service**

        Fair allocation of limited-stock drops in two phases.

        ## Features

        * **Waitlist**: Join and leave a drop's waitlist, see your position
        * **Priority scoring**: Seeded, deterministic fairness score at join time
        * **Claims**: Idempotent, row-locked claim transaction with no over-allocation
        * **Completion**: Claims expire if not completed in time

        ## Authentication

        Most endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        """,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(DropAllocationError)
async def drop_allocation_error_handler(request: Request, exc: DropAllocationError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {
                "code": exc.code,
                "message": exc.message,
                "details": exc.details,
            },
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Drop Allocation Service is running"}

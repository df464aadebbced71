from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import OperationalError

from ticketing.api.errors import service_error_handler, storage_unavailable_handler
from ticketing.api.v1.router import router as v1_router
from ticketing.core.config import settings
from ticketing.core.logging import configure_logging
from ticketing.db import create_tables
from ticketing.middleware.rate_limit import RateLimitMiddleware
from ticketing.middleware.request_id import RequestIdMiddleware
from ticketing.services.exceptions import ServiceError

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        create_tables()
    yield


app = FastAPI(title="Ticketing API", lifespan=lifespan)

# Starlette runs the LAST added middleware FIRST (outermost).
# RequestId wraps everything so rate-limited and preflight responses carry it;
# RateLimit sits closest to the app.
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(ServiceError, service_error_handler)
app.add_exception_handler(OperationalError, storage_unavailable_handler)

Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
def root():
    return {"name": "Ticketing API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(v1_router, prefix="/v1")

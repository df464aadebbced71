import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from ticketing.services.exceptions import (
    ConflictError,
    NotFoundError,
    PaymentGatewayError,
    PaymentVerificationFailedError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def http_error_from_service(err: ServiceError) -> HTTPException:
    if isinstance(err, NotFoundError):
        status = 404
    elif isinstance(err, PermissionDeniedError):
        status = 403
    elif isinstance(err, ConflictError):
        status = 409
    elif isinstance(err, ValidationError):
        status = 422
    elif isinstance(err, PaymentVerificationFailedError):
        status = 402
    elif isinstance(err, PaymentGatewayError):
        status = 502
    else:
        status = 500

    return HTTPException(
        status_code=status,
        detail={"code": err.code, "message": err.message, **err.extra()},
    )


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    http_exc = http_error_from_service(exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


async def storage_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("storage_unavailable", path=request.url.path, error=str(exc.orig))
    return JSONResponse(
        status_code=503,
        content={"detail": {"code": "storage_unavailable", "message": "try again"}},
        headers={"Retry-After": "1"},
    )

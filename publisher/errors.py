import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from publisher.platforms.exceptions import (
    CompatibilityError,
    CredentialsMissing,
    ExchangeRejected,
    Forbidden,
    InvalidLaunchSpec,
    InvalidPublishTarget,
    PaymentIneligible,
    PipelineStepFailed,
    PlatformError,
    RemoteAPIError,
    TokenExpired,
    TokenMissing,
    Unauthorized,
)
from publisher.services.deauthorize import InvalidSignedRequest

logger = logging.getLogger(__name__)

# Most specific class first; TokenRequired is covered by TokenMissing
STATUS_BY_ERROR: tuple[tuple[type[PlatformError], int], ...] = (
    (CredentialsMissing, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (Unauthorized, status.HTTP_401_UNAUTHORIZED),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (TokenMissing, status.HTTP_401_UNAUTHORIZED),
    (TokenExpired, status.HTTP_401_UNAUTHORIZED),
    (ExchangeRejected, status.HTTP_400_BAD_REQUEST),
    (InvalidSignedRequest, status.HTTP_400_BAD_REQUEST),
    (InvalidLaunchSpec, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (CompatibilityError, status.HTTP_409_CONFLICT),
    (PaymentIneligible, status.HTTP_409_CONFLICT),
    (InvalidPublishTarget, status.HTTP_409_CONFLICT),
    (PipelineStepFailed, status.HTTP_502_BAD_GATEWAY),
    (RemoteAPIError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: PlatformError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def platform_exception_handler(request: Request, exc: PlatformError):
    code = status_for(exc)
    if isinstance(exc, CredentialsMissing):
        logger.error("Server misconfigured: %s", exc.message)
        return JSONResponse(
            status_code=code,
            content={"error": {"message": "Server configuration error", "type": "ServerError"}},
        )

    content = {
        "error": {
            "message": exc.message,
            "type": exc.__class__.__name__,
            "details": exc.details,
        }
    }
    if isinstance(exc, (TokenMissing, TokenExpired)):
        content["requires_reauth"] = True
    if code >= 500:
        logger.warning("%s on %s %s: %s", exc.__class__.__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=code, content=content)


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"message": "Database error occurred", "type": "DatabaseError"}},
    )

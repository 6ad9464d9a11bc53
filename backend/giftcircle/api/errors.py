"""Maps domain errors raised by the services onto HTTP responses."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from giftcircle.core.errors import (
    Conflict,
    GiftCircleError,
    NotAuthorized,
    NotFound,
    PartialWriteError,
    TransientStoreError,
    ValidationFailed,
)

logger = logging.getLogger("giftcircle.errors")


def status_for(exc: GiftCircleError) -> int:
    if isinstance(exc, ValidationFailed):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, NotAuthorized):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, Conflict):
        # the desired end state already exists
        return status.HTTP_200_OK if exc.benign else status.HTTP_409_CONFLICT
    if isinstance(exc, PartialWriteError):
        return status.HTTP_207_MULTI_STATUS
    if isinstance(exc, TransientStoreError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def domain_error_handler(request: Request, exc: GiftCircleError) -> JSONResponse:
    code = status_for(exc)
    content = {"detail": exc.message, "code": exc.code}
    if exc.details:
        content["details"] = exc.details
    if isinstance(exc, Conflict):
        content["benign"] = exc.benign
    headers = None
    if isinstance(exc, TransientStoreError):
        headers = {"Retry-After": "1"}

    if code >= 500:
        logger.error("Domain error path=%s code=%s: %s", request.url.path, exc.code, exc.message)
    elif isinstance(exc, PartialWriteError):
        logger.warning(
            "Partial write path=%s completed=%s failed=%s",
            request.url.path,
            exc.completed_step,
            exc.failed_step,
        )
    else:
        logger.info("Domain error path=%s code=%s: %s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=code, content=content, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GiftCircleError, domain_error_handler)

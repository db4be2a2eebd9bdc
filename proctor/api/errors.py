"""Map engine errors to HTTP responses.

Handlers never build error responses themselves: they let a
LifecycleError out of the service call and dependencies.run_service()
turns it into an HTTPException here, after the request transaction has
committed whatever the engine legitimately wrote (a lazy expiry that
happened before a submit was rejected, for example).
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from proctor.core.errors import LifecycleError, PayloadTooLarge

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "validation": status.HTTP_400_BAD_REQUEST,
}


def http_error(exc: LifecycleError) -> HTTPException:
    if isinstance(exc, PayloadTooLarge):
        status_code = status.HTTP_413_CONTENT_TOO_LARGE
    else:
        status_code = _STATUS_BY_KIND[exc.kind]
    logger.warning("Rejected %s (%d): %s", exc.code, status_code, exc.message)
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": exc.message},
    )

"""Translate service exceptions into HTTP responses.

Routers catch ``CredentialServiceError`` and raise ``http_error(e)``.
The body is ``{"detail": {"code": ..., "message": ...}}`` so clients can
branch on ``code`` without parsing prose.
"""

from __future__ import annotations

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from certchain.core.errors import (
    CredentialServiceError,
    ExternalStoreError,
    LedgerRejectedError,
    NotFoundError,
    RecoverableInconsistencyError,
    StateConflictError,
    ValidationError,
)

RETRY_AFTER_SECONDS = "5"


def http_error(exc: CredentialServiceError) -> HTTPException:
    detail = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(exc, (StateConflictError, LedgerRejectedError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(exc, ExternalStoreError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


def pending_reconciliation(exc: RecoverableInconsistencyError) -> JSONResponse:
    """202: the operation is durable on the ledger and will be finished.

    The caller must not repeat the request.
    """
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={
            "status": "pending_reconciliation",
            "operation": exc.operation,
            "credential_id": exc.credential_id,
        },
    )

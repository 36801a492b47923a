"""Credential issuance, revocation and public verification.

- POST /v1/credentials/issue                  admin, 201 (202 if pending)
- POST /v1/credentials/{id}/revoke            admin, 200 (202 if pending)
- GET  /v1/credentials/{id}/verify            public
- POST /v1/credentials/reconcile              admin, 202; sweeps the
                                              pending journal after the
                                              response is sent
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from certchain.api.dependencies import AdminDep, ServicesDep
from certchain.api.errors import http_error, pending_reconciliation
from certchain.core.errors import CredentialServiceError, RecoverableInconsistencyError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/credentials", tags=["credentials"])


class IssueIn(BaseModel):
    subject_id: str
    course: str


class IssueOut(BaseModel):
    credential_id: str
    content_link: str


class RevokeOut(BaseModel):
    credential_id: str
    status: str
    revoked_at: int
    ledger_ref: str | None


class VerifyOut(BaseModel):
    credential_id: str
    valid: bool
    reason: str
    subject_name: str
    course: str
    content_link: str | None


class ReconcileOut(BaseModel):
    status: str
    pending: int


@router.post(
    "/issue",
    response_model=IssueOut,
    status_code=status.HTTP_201_CREATED,
    responses={202: {"description": "Committed on the ledger; pending reconciliation"}},
)
async def issue_credential(
    body: IssueIn, services: ServicesDep, _admin: AdminDep
) -> IssueOut | JSONResponse:
    try:
        result = await services.orchestrator.issue(body.subject_id, body.course)
    except RecoverableInconsistencyError as e:
        return pending_reconciliation(e)
    except CredentialServiceError as e:
        raise http_error(e) from None
    return IssueOut(credential_id=result.credential_id, content_link=result.content_link)


@router.post(
    "/reconcile",
    response_model=ReconcileOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reconcile(
    background: BackgroundTasks, services: ServicesDep, _admin: AdminDep
) -> ReconcileOut:
    pending = await services.registry.list_pending()
    background.add_task(services.reconciler.reconcile_pending)
    logger.info("Reconciliation requested; %d pending", len(pending))
    return ReconcileOut(status="queued", pending=len(pending))


@router.post(
    "/{credential_id}/revoke",
    response_model=RevokeOut,
    responses={202: {"description": "Revoked on the ledger; pending reconciliation"}},
)
async def revoke_credential(
    credential_id: str, services: ServicesDep, _admin: AdminDep
) -> RevokeOut | JSONResponse:
    try:
        result = await services.orchestrator.revoke(credential_id)
    except RecoverableInconsistencyError as e:
        return pending_reconciliation(e)
    except CredentialServiceError as e:
        raise http_error(e) from None
    return RevokeOut(
        credential_id=result.credential_id,
        status="revoked",
        revoked_at=result.revoked_at,
        ledger_ref=result.ledger_ref,
    )


@router.get("/{credential_id}/verify", response_model=VerifyOut)
async def verify_credential(credential_id: str, services: ServicesDep) -> VerifyOut:
    try:
        result = await services.verifier.verify(credential_id)
    except CredentialServiceError as e:
        raise http_error(e) from None
    return VerifyOut(
        credential_id=result.credential_id,
        valid=result.valid,
        reason=result.reason.value,
        subject_name=result.subject_name,
        course=result.course,
        content_link=result.content_link,
    )

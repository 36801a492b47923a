"""Issue and revoke: the cross-store write protocol.

Three stores take part and none of them shares a transaction with the
others.  The ledger is the point of no return:

  before the ledger call   any failure is undone locally (the
                           reservation is released) and re-raised;
  after the ledger call    nothing is undone.  Remaining steps are
                           retried inline, then handed to
                           reconciliation through the pending journal.

Concurrency control for one fingerprint is a lease (fast rejection
across processes) backed by the registry's reserve_* compare-and-set
(the durable guarantee).  Once a lease is held, the rest of the
operation runs in a task shielded from caller cancellation, so a client
disconnect can never strand a ledger commitment without its record.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from certchain.core.errors import (
    AlreadyInProgressError,
    AlreadyRevokedError,
    CredentialServiceError,
    FingerprintMismatchError,
    LedgerRejectedError,
    NotFoundError,
    RecoverableInconsistencyError,
    ValidationError,
)
from certchain.core.metrics import CREDENTIAL_OPERATIONS
from certchain.models.credential import (
    CredentialRecord,
    CredentialStatus,
    OperationKind,
    PendingOperation,
    new_credential_id,
)
from certchain.repos.registry import CredentialRegistry, ensure_enrolled
from certchain.services.archive import ContentArchive
from certchain.services.fingerprint import fingerprint, recompute_fingerprint
from certchain.services.lease import LeaseManager
from certchain.services.ledger import VerificationLedger
from certchain.services.renderer import CredentialRenderer
from certchain.services.task_queue import RECONCILIATION_QUEUE, TaskQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class IssueResult:
    credential_id: str
    content_link: str


@dataclass(frozen=True, slots=True)
class RevokeResult:
    credential_id: str
    revoked_at: int
    ledger_ref: str | None


class IssuanceOrchestrator:
    _MAX_RETRIES = 3
    _BASE_DELAY_S = 0.5

    def __init__(
        self,
        *,
        registry: CredentialRegistry,
        ledger: VerificationLedger,
        archive: ContentArchive,
        renderer: CredentialRenderer,
        lease: LeaseManager,
        task_queue: TaskQueue,
        lease_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._archive = archive
        self._renderer = renderer
        self._lease = lease
        self._task_queue = task_queue
        self._lease_ttl = lease_ttl_seconds
        self._clock = clock
        self._inflight: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def issue(self, subject_id: str, course: str) -> IssueResult:
        try:
            result = await self._issue(subject_id, course)
        except CredentialServiceError as exc:
            CREDENTIAL_OPERATIONS.labels(operation="issue", outcome=exc.code).inc()
            raise
        except Exception:
            CREDENTIAL_OPERATIONS.labels(operation="issue", outcome="error").inc()
            raise
        CREDENTIAL_OPERATIONS.labels(operation="issue", outcome="success").inc()
        return result

    async def _issue(self, subject_id: str, course: str) -> IssueResult:
        subject_id = _require(subject_id, "subject_id")
        course = _require(course, "course")

        subject = await self._registry.get_subject(subject_id)
        if subject is None:
            raise NotFoundError(f"subject {subject_id} not found")
        enrollment = subject.enrollment(course)
        if enrollment is None:
            raise NotFoundError(f"subject {subject_id} is not enrolled in {course}")
        ensure_enrolled(enrollment)

        # The name is snapshotted here; later edits to the subject do not
        # affect this credential.
        op = PendingOperation(
            fingerprint=fingerprint(subject.name, subject_id, course),
            kind=OperationKind.ISSUE,
            credential_id=new_credential_id(),
            subject_id=subject_id,
            subject_name=subject.name,
            course=course,
            created_at=int(self._clock()),
        )
        token = await self._acquire(op.fingerprint)
        return await self._shielded(self._drive_issue(op, token), op)

    async def _drive_issue(self, op: PendingOperation, token: str) -> IssueResult:
        extra = _log_context(op)
        try:
            await self._registry.reserve_issuance(op)
            try:
                ledger_ref = await self._commit_or_adopt(op)
            except Exception:
                await self._registry.release_issuance(op.fingerprint)
                raise
            logger.info("Ledger commit confirmed", extra=extra)

            try:
                record = await self._retrying(
                    "issue", op, self._confirm_and_finish_issue, op, ledger_ref
                )
            except Exception as exc:
                await self._hand_off(op, exc)
                raise RecoverableInconsistencyError(
                    operation="issue",
                    fingerprint=op.fingerprint,
                    credential_id=op.credential_id,
                    cause=exc,
                ) from exc

            logger.info("Credential issued", extra=extra)
            return IssueResult(
                credential_id=record.credential_id,
                content_link=self._archive.resolve(record.content_address),
            )
        finally:
            await self._lease.release(op.fingerprint, token)

    async def _commit_or_adopt(self, op: PendingOperation) -> str | None:
        try:
            return await self._ledger.commit(op.fingerprint)
        except LedgerRejectedError:
            # Already committed: an earlier attempt for this exact
            # (name, subject, course) reached the ledger and then lost its
            # reservation.  A valid commitment is adopted; a revoked one is
            # final and stays rejected.
            if not await self._ledger.is_valid(op.fingerprint):
                raise
            logger.warning(
                "Adopting existing ledger commitment", extra=_log_context(op)
            )
            return None

    async def _confirm_and_finish_issue(
        self, op: PendingOperation, ledger_ref: str | None
    ) -> CredentialRecord:
        confirmed = await self._registry.confirm_pending(op.fingerprint, ledger_ref)
        return await self.finish_issuance(confirmed)

    async def finish_issuance(self, op: PendingOperation) -> CredentialRecord:
        """Archive the rendered document and record the credential.

        Safe to repeat: the archive is content-addressed and
        complete_issuance is a no-op once the record exists.
        """
        doc = self._renderer.render(
            credential_id=op.credential_id,
            subject_name=op.subject_name,
            subject_id=op.subject_id,
            course=op.course,
            fingerprint=op.fingerprint,
        )
        address = await self._archive.put(doc.content, filename=doc.filename)
        record = CredentialRecord(
            credential_id=op.credential_id,
            subject_id=op.subject_id,
            subject_name=op.subject_name,
            course=op.course,
            fingerprint=op.fingerprint,
            ledger_ref=op.ledger_ref,
            content_address=address,
            issued_at=int(self._clock()),
        )
        return await self._registry.complete_issuance(op.fingerprint, record)

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    async def revoke(self, credential_id: str) -> RevokeResult:
        try:
            result = await self._revoke(credential_id)
        except CredentialServiceError as exc:
            CREDENTIAL_OPERATIONS.labels(operation="revoke", outcome=exc.code).inc()
            raise
        except Exception:
            CREDENTIAL_OPERATIONS.labels(operation="revoke", outcome="error").inc()
            raise
        CREDENTIAL_OPERATIONS.labels(operation="revoke", outcome="success").inc()
        return result

    async def _revoke(self, credential_id: str) -> RevokeResult:
        credential_id = _require(credential_id, "credential_id")
        record = await self._registry.get_credential(credential_id)
        if record is None:
            raise NotFoundError(f"credential {credential_id} not found")
        if record.status is CredentialStatus.REVOKED:
            raise AlreadyRevokedError(f"credential {credential_id} already revoked")

        recomputed = recompute_fingerprint(record)
        if recomputed != record.fingerprint:
            logger.error(
                "Refusing to revoke a record whose fields no longer match its fingerprint",
                extra={"credential_id": credential_id, "fingerprint": record.fingerprint},
            )
            raise FingerprintMismatchError(
                f"credential {credential_id} does not match its ledger fingerprint"
            )

        op = PendingOperation(
            fingerprint=recomputed,
            kind=OperationKind.REVOKE,
            credential_id=record.credential_id,
            subject_id=record.subject_id,
            subject_name=record.subject_name,
            course=record.course,
            created_at=int(self._clock()),
        )
        token = await self._acquire(op.fingerprint)
        return await self._shielded(self._drive_revoke(op, token), op)

    async def _drive_revoke(self, op: PendingOperation, token: str) -> RevokeResult:
        extra = _log_context(op)
        try:
            await self._registry.reserve_revocation(op)
            try:
                ledger_ref = await self._revoke_or_adopt(op)
            except Exception:
                await self._registry.release_revocation(op.fingerprint)
                raise
            logger.info("Ledger revoke confirmed", extra=extra)

            try:
                record = await self._retrying(
                    "revoke", op, self._confirm_and_finish_revoke, op, ledger_ref
                )
            except Exception as exc:
                await self._hand_off(op, exc)
                raise RecoverableInconsistencyError(
                    operation="revoke",
                    fingerprint=op.fingerprint,
                    credential_id=op.credential_id,
                    cause=exc,
                ) from exc

            logger.info("Credential revoked", extra=extra)
            return RevokeResult(
                credential_id=record.credential_id,
                revoked_at=record.revoked_at or int(self._clock()),
                ledger_ref=ledger_ref,
            )
        finally:
            await self._lease.release(op.fingerprint, token)

    async def _revoke_or_adopt(self, op: PendingOperation) -> str | None:
        try:
            return await self._ledger.revoke(op.fingerprint)
        except LedgerRejectedError:
            # An earlier revoke reached the ledger but not the registry.
            if await self._ledger.is_valid(op.fingerprint):
                raise
            logger.warning("Ledger already revoked; finishing", extra=_log_context(op))
            return None

    async def _confirm_and_finish_revoke(
        self, op: PendingOperation, ledger_ref: str | None
    ) -> CredentialRecord:
        confirmed = await self._registry.confirm_pending(op.fingerprint, ledger_ref)
        return await self.finish_revocation(confirmed)

    async def finish_revocation(self, op: PendingOperation) -> CredentialRecord:
        return await self._registry.complete_revocation(
            op.fingerprint, revoked_at=int(self._clock())
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for operations whose callers went away."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _acquire(self, fp: str) -> str:
        token = await self._lease.acquire(fp, self._lease_ttl)
        if token is None:
            raise AlreadyInProgressError(f"fingerprint {fp} is in flight")
        return token

    async def _shielded(self, coro: Awaitable[T], op: PendingOperation) -> T:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning(
                "Caller cancelled; finishing %s in background",
                op.kind,
                extra=_log_context(op),
            )
            task.add_done_callback(_log_detached_outcome)
            raise

    async def _retrying(
        self,
        operation: str,
        op: PendingOperation,
        fn: Callable[..., Awaitable[T]],
        *args,
    ) -> T:
        for attempt in range(self._MAX_RETRIES + 1):
            try:
                return await fn(*args)
            except Exception:
                if attempt >= self._MAX_RETRIES:
                    raise
                delay = self._BASE_DELAY_S * (2**attempt)
                logger.warning(
                    "%s completion failed (attempt %d), retrying in %.1fs",
                    operation,
                    attempt + 1,
                    delay,
                    exc_info=True,
                    extra=_log_context(op),
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def _hand_off(self, op: PendingOperation, exc: BaseException) -> None:
        logger.error(
            "%s left pending reconciliation: %s",
            op.kind,
            exc,
            extra=_log_context(op),
        )
        try:
            await self._task_queue.enqueue(
                RECONCILIATION_QUEUE,
                {"fingerprint": op.fingerprint, "operation": op.kind.value},
            )
        except Exception:
            # The worker's periodic sweep still finds the journal entry.
            logger.exception("Could not enqueue reconciliation", extra=_log_context(op))


def _require(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required")
    return value


def _log_context(op: PendingOperation) -> dict:
    return {
        "operation": op.kind.value,
        "credential_id": op.credential_id,
        "subject_id": op.subject_id,
        "fingerprint": op.fingerprint,
    }


def _log_detached_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        logger.info("Background operation completed after caller cancelled")
    else:
        logger.error(
            "Background operation failed after caller cancelled",
            exc_info=(type(exc), exc, exc.__traceback__),
        )

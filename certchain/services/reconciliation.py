"""Finish or undo issue/revoke operations that their caller did not.

Every entry in the pending journal is in one of two states:

LEDGER_CONFIRMED
    The ledger side is durable.  Re-run the registry (and for issuance
    the archive) steps; they are idempotent.

RESERVED
    The process that reserved the fingerprint died around the ledger
    call, so we do not know whether it landed.  Ask the ledger:

    ===========  ==================  ===================================
    kind         ledger is_valid     action
    ===========  ==================  ===================================
    issue        True                confirm (no ref) and complete
    issue        False               release (enrollment back to ENROLLED)
    revoke       False               confirm (no ref) and complete
    revoke       True                release
    ===========  ==================  ===================================

Each entry is handled under the same per-fingerprint lease the
orchestrator uses, so an operation that is still running in some API
process is left alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from certchain.core.metrics import CREDENTIAL_OPERATIONS, PENDING_RECONCILIATIONS
from certchain.models.credential import OperationKind, PendingStage
from certchain.repos.registry import CredentialRegistry
from certchain.services.lease import LeaseManager
from certchain.services.ledger import VerificationLedger
from certchain.services.orchestrator import IssuanceOrchestrator

logger = logging.getLogger(__name__)


class ReconcileOutcome(StrEnum):
    COMPLETED = "completed"
    RELEASED = "released"
    SKIPPED = "skipped"  # lease held elsewhere
    GONE = "gone"  # no journal entry (already finished)
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ReconcileReport:
    completed: int = 0
    released: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.completed + self.released + self.skipped + self.failed


class ReconciliationService:
    def __init__(
        self,
        *,
        registry: CredentialRegistry,
        ledger: VerificationLedger,
        lease: LeaseManager,
        orchestrator: IssuanceOrchestrator,
        lease_ttl_seconds: float = 300.0,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._lease = lease
        self._orchestrator = orchestrator
        self._lease_ttl = lease_ttl_seconds

    async def reconcile_pending(self) -> ReconcileReport:
        """Sweep the whole journal once."""
        pending = await self._registry.list_pending()
        PENDING_RECONCILIATIONS.set(len(pending))
        if not pending:
            return ReconcileReport()

        logger.info("Reconciling %d pending operation(s)", len(pending))
        counts = {outcome: 0 for outcome in ReconcileOutcome}
        for op in pending:
            try:
                outcome = await self.reconcile_one(op.fingerprint)
            except Exception:
                logger.exception(
                    "Reconciliation failed",
                    extra={
                        "operation": op.kind.value,
                        "credential_id": op.credential_id,
                        "fingerprint": op.fingerprint,
                    },
                )
                outcome = ReconcileOutcome.FAILED
                CREDENTIAL_OPERATIONS.labels(
                    operation="reconcile", outcome=outcome.value
                ).inc()
            counts[outcome] += 1

        PENDING_RECONCILIATIONS.set(len(await self._registry.list_pending()))
        return ReconcileReport(
            completed=counts[ReconcileOutcome.COMPLETED],
            released=counts[ReconcileOutcome.RELEASED],
            skipped=counts[ReconcileOutcome.SKIPPED],
            failed=counts[ReconcileOutcome.FAILED],
        )

    async def reconcile_one(self, fingerprint: str) -> ReconcileOutcome:
        token = await self._lease.acquire(fingerprint, self._lease_ttl)
        if token is None:
            outcome = ReconcileOutcome.SKIPPED
        else:
            try:
                outcome = await self._resolve(fingerprint)
            finally:
                await self._lease.release(fingerprint, token)
        CREDENTIAL_OPERATIONS.labels(operation="reconcile", outcome=outcome.value).inc()
        return outcome

    async def _resolve(self, fingerprint: str) -> ReconcileOutcome:
        # Re-read under the lease: the owner may have finished meanwhile.
        op = await self._registry.get_pending(fingerprint)
        if op is None:
            return ReconcileOutcome.GONE
        extra = {
            "operation": op.kind.value,
            "credential_id": op.credential_id,
            "subject_id": op.subject_id,
            "fingerprint": fingerprint,
        }

        if op.stage is PendingStage.RESERVED:
            landed = await self._ledger.is_valid(fingerprint)
            if op.kind is OperationKind.ISSUE and not landed:
                await self._registry.release_issuance(fingerprint)
                logger.info("Released issuance that never reached the ledger", extra=extra)
                return ReconcileOutcome.RELEASED
            if op.kind is OperationKind.REVOKE and landed:
                await self._registry.release_revocation(fingerprint)
                logger.info("Released revocation that never reached the ledger", extra=extra)
                return ReconcileOutcome.RELEASED
            op = await self._registry.confirm_pending(fingerprint, None)

        if op.kind is OperationKind.ISSUE:
            await self._orchestrator.finish_issuance(op)
        else:
            await self._orchestrator.finish_revocation(op)
        logger.info("Reconciled pending operation", extra=extra)
        return ReconcileOutcome.COMPLETED

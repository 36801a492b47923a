"""Service-layer exceptions.

Services raise these; routers translate them to HTTP responses and the
worker decides whether to retry.  ``code`` is stable and machine-readable
(it is what API clients and the outcome metric see).
"""

from __future__ import annotations


class CredentialServiceError(Exception):
    code = "error"
    retryable = False


# --- Validation -------------------------------------------------------------


class ValidationError(CredentialServiceError, ValueError):
    code = "validation_error"


# --- Lookup -----------------------------------------------------------------


class NotFoundError(CredentialServiceError):
    code = "not_found"


# --- State conflicts (rejected after a registry read, no side effects) ------


class StateConflictError(CredentialServiceError):
    code = "state_conflict"


class AlreadyEnrolledError(StateConflictError):
    code = "already_enrolled"


class AlreadyCertifiedError(StateConflictError):
    code = "already_certified"


class EnrollmentRevokedError(StateConflictError):
    code = "revoked"


class AlreadyRevokedError(StateConflictError):
    code = "already_revoked"


class AlreadyInProgressError(StateConflictError):
    code = "already_in_progress"


class DuplicateSubjectError(StateConflictError):
    code = "duplicate_subject"


class DuplicateInstitutionError(StateConflictError):
    code = "duplicate_institution"


class FingerprintMismatchError(StateConflictError):
    """A stored record whose fields no longer hash to its fingerprint."""

    code = "fingerprint_mismatch"


class InvalidTransitionError(StateConflictError):
    """A status change the state machine does not allow."""

    code = "invalid_transition"


# --- External stores --------------------------------------------------------


class ExternalStoreError(CredentialServiceError):
    retryable = True


class LedgerUnavailableError(ExternalStoreError):
    code = "ledger_unavailable"


class ArchiveUnavailableError(ExternalStoreError):
    code = "archive_unavailable"


class LedgerRejectedError(CredentialServiceError):
    """The ledger refused the call: commit of a committed fingerprint,
    revoke of an unknown or already-revoked one."""

    code = "ledger_rejected"


# --- Post-ledger failures ---------------------------------------------------


class RecoverableInconsistencyError(CredentialServiceError):
    """The ledger step is confirmed but a later step failed.

    The journal entry for ``fingerprint`` stays in place and reconciliation
    finishes the operation.  Callers must not re-run Issue/Revoke: that
    would attempt a second ledger mutation for the same fingerprint.
    """

    code = "pending_reconciliation"

    def __init__(
        self,
        *,
        operation: str,
        fingerprint: str,
        credential_id: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            f"{operation} of {credential_id} confirmed on ledger but not recorded; "
            "reconciliation will complete it"
        )
        self.operation = operation
        self.fingerprint = fingerprint
        self.credential_id = credential_id
        self.cause = cause

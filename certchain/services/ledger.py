"""Verification ledger clients.

The ledger is an external append-only service.  We only rely on this
contract:

  commit(fp)        -> ref   (rejects a fingerprint that is already committed)
  revoke(fp)        -> ref   (rejects unknown or already-revoked fingerprints)
  is_valid(fp)      -> bool  (latest finalized state)
  grant_minter(id)  -> ref

A mutating call returns only once the ledger reports the transaction
FINALIZED.  "Accepted" is not enough: an accepted transaction can still
be dropped or reordered by the ledger's own consensus, and the
orchestrator treats a returned ref as durable.

InMemoryVerificationLedger backs dev and tests when LEDGER_URL is unset,
the same fallback the registry and the Redis-backed services use.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol, runtime_checkable
from uuid import uuid4

import httpx

from certchain.core.errors import LedgerRejectedError, LedgerUnavailableError
from certchain.core.metrics import track_external_call

logger = logging.getLogger(__name__)


@runtime_checkable
class VerificationLedger(Protocol):
    async def commit(self, fingerprint: str) -> str: ...
    async def revoke(self, fingerprint: str) -> str: ...
    async def is_valid(self, fingerprint: str) -> bool: ...
    async def grant_minter(self, identity: str) -> str: ...
    async def close(self) -> None: ...


class InMemoryVerificationLedger:
    """Ledger fake with finality on return.

    ``_entries`` maps fingerprint -> valid flag; a revoked fingerprint
    stays in the map as False because the real ledger never forgets a
    commitment.
    """

    def __init__(self) -> None:
        self._entries: dict[str, bool] = {}
        self._minters: set[str] = set()
        self._tx_log: list[tuple[str, str, str]] = []  # (ref, call, subject)

    def _record(self, call: str, subject: str) -> str:
        ref = f"0x{uuid4().hex}"
        self._tx_log.append((ref, call, subject))
        return ref

    async def commit(self, fingerprint: str) -> str:
        if fingerprint in self._entries:
            raise LedgerRejectedError(f"fingerprint {fingerprint} already committed")
        self._entries[fingerprint] = True
        return self._record("commit", fingerprint)

    async def revoke(self, fingerprint: str) -> str:
        if not self._entries.get(fingerprint, False):
            raise LedgerRejectedError(
                f"fingerprint {fingerprint} is not currently committed"
            )
        self._entries[fingerprint] = False
        return self._record("revoke", fingerprint)

    async def is_valid(self, fingerprint: str) -> bool:
        return self._entries.get(fingerprint, False)

    async def grant_minter(self, identity: str) -> str:
        self._minters.add(identity.lower())
        return self._record("grant_minter", identity)

    async def close(self) -> None:
        return None


class HttpVerificationLedger:
    """HTTP gateway client for the ledger.

    Endpoints (owned by the ledger gateway, not by us):
      POST /commitments                    {"fingerprint"} -> {"tx_ref"}
      POST /commitments/{fp}/revoke                        -> {"tx_ref"}
      GET  /commitments/{fp}                               -> {"valid"}
      POST /minters                        {"identity"}    -> {"tx_ref"}
      GET  /transactions/{tx_ref}                          -> {"status"}

    409 from a mutating endpoint is a rejection; transport errors, timeouts
    and 5xx are LedgerUnavailableError.
    """

    _FINALIZED = "finalized"
    _DROPPED = ("dropped", "failed", "reverted")

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        confirm_timeout: float = 120.0,
        poll_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval

    async def commit(self, fingerprint: str) -> str:
        with track_external_call("ledger", "commit"):
            tx_ref = await self._submit(
                "POST", "/commitments", json={"fingerprint": fingerprint}
            )
            await self._wait_for_finality(tx_ref)
        return tx_ref

    async def revoke(self, fingerprint: str) -> str:
        with track_external_call("ledger", "revoke"):
            tx_ref = await self._submit("POST", f"/commitments/{fingerprint}/revoke")
            await self._wait_for_finality(tx_ref)
        return tx_ref

    async def grant_minter(self, identity: str) -> str:
        with track_external_call("ledger", "grant_minter"):
            tx_ref = await self._submit("POST", "/minters", json={"identity": identity})
            await self._wait_for_finality(tx_ref)
        return tx_ref

    async def is_valid(self, fingerprint: str) -> bool:
        with track_external_call("ledger", "is_valid"):
            resp = await self._request("GET", f"/commitments/{fingerprint}")
            if resp.status_code == 404:
                return False
            self._raise_for_status(resp)
            return bool(self._body(resp).get("valid", False))

    async def close(self) -> None:
        await self._client.aclose()

    # -- internals -------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Ledger %s %s failed: %s", method, url, e)
            raise LedgerUnavailableError(f"ledger unreachable: {e}") from e

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code == 409:
            try:
                detail = resp.json().get("detail", "rejected")
            except (ValueError, AttributeError):
                detail = resp.text or "rejected"
            raise LedgerRejectedError(str(detail))
        if resp.status_code >= 400:
            raise LedgerUnavailableError(
                f"ledger returned HTTP {resp.status_code} for {resp.request.url.path}"
            )

    def _body(self, resp: httpx.Response) -> dict:
        """A 2xx that is not a JSON object came from something other than the gateway."""
        try:
            body = resp.json()
        except ValueError as e:
            raise LedgerUnavailableError(
                f"ledger returned a non-JSON body for {resp.request.url.path}"
            ) from e
        if not isinstance(body, dict):
            raise LedgerUnavailableError(
                f"ledger returned an unexpected body for {resp.request.url.path}"
            )
        return body

    async def _submit(self, method: str, url: str, **kwargs) -> str:
        resp = await self._request(method, url, **kwargs)
        self._raise_for_status(resp)
        tx_ref = self._body(resp).get("tx_ref")
        if not tx_ref:
            raise LedgerUnavailableError("ledger accepted the call without a tx_ref")
        return str(tx_ref)

    async def _wait_for_finality(self, tx_ref: str) -> None:
        deadline = time.monotonic() + self._confirm_timeout
        while True:
            resp = await self._request("GET", f"/transactions/{tx_ref}")
            self._raise_for_status(resp)
            status = self._body(resp).get("status")
            if status == self._FINALIZED:
                logger.debug("Ledger tx %s finalized", tx_ref)
                return
            if status in self._DROPPED:
                raise LedgerUnavailableError(f"ledger tx {tx_ref} was {status}")
            if time.monotonic() >= deadline:
                raise LedgerUnavailableError(
                    f"ledger tx {tx_ref} not finalized within {self._confirm_timeout}s"
                )
            await asyncio.sleep(self._poll_interval)

"""Content archive clients.

Rendered credential documents are immutable and addressed by their
content: putting the same bytes twice yields the same address, which
is what makes re-driving an interrupted issuance safe.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Protocol, runtime_checkable

import httpx

from certchain.core.errors import ArchiveUnavailableError
from certchain.core.metrics import track_external_call

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentArchive(Protocol):
    async def put(self, content: bytes, *, filename: str) -> str:
        """Store bytes, return their content address."""
        ...

    def resolve(self, address: str) -> str:
        """Return a URI the content can be fetched from."""
        ...

    async def close(self) -> None: ...


class InMemoryContentArchive:
    """Content-addressed dict keyed by sha256 hex."""

    def __init__(self, gateway_url: str = "http://localhost:8080/ipfs") -> None:
        self._gateway_url = gateway_url.rstrip("/")
        self._blobs: dict[str, bytes] = {}

    async def put(self, content: bytes, *, filename: str) -> str:
        address = hashlib.sha256(content).hexdigest()
        self._blobs.setdefault(address, content)
        return address

    def get(self, address: str) -> bytes | None:
        return self._blobs.get(address)

    def resolve(self, address: str) -> str:
        return f"{self._gateway_url}/{address}"

    async def close(self) -> None:
        return None


class HttpContentArchive:
    """IPFS pinning-service client.

    ``POST {base}/pinning/pinFileToIPFS`` with a multipart ``file`` part;
    the response carries the CID as ``IpfsHash``.  IPFS derives the CID
    from the bytes, so a repeated put of the same document is a no-op
    that returns the same address.
    """

    def __init__(
        self,
        base_url: str,
        *,
        gateway_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport
        )
        self._gateway_url = gateway_url.rstrip("/")

    async def put(self, content: bytes, *, filename: str) -> str:
        with track_external_call("archive", "put"):
            try:
                resp = await self._client.post(
                    "/pinning/pinFileToIPFS",
                    files={"file": (filename, content, "application/json")},
                )
            except httpx.HTTPError as e:
                logger.warning("Archive upload of %s failed: %s", filename, e)
                raise ArchiveUnavailableError(f"archive unreachable: {e}") from e

            if resp.status_code >= 400:
                raise ArchiveUnavailableError(
                    f"archive returned HTTP {resp.status_code} for {filename}"
                )
            try:
                body = resp.json()
            except ValueError as e:
                raise ArchiveUnavailableError(
                    f"archive returned a non-JSON body for {filename}"
                ) from e
            address = body.get("IpfsHash") if isinstance(body, dict) else None
            if not address:
                raise ArchiveUnavailableError("archive response missing IpfsHash")
        return str(address)

    def resolve(self, address: str) -> str:
        return f"{self._gateway_url}/{address}"

    async def close(self) -> None:
        await self._client.aclose()

"""Credential document rendering.

Rendering proper (a designed PDF) belongs to an external renderer.  The
default renderer emits a canonical JSON document carrying everything
a human or machine needs to check the credential: holder, course,
credential id, fingerprint and the verification link.  Output is
byte-for-byte deterministic for the same inputs, which keeps archive
re-puts idempotent during reconciliation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RenderedDocument:
    filename: str
    content: bytes


@runtime_checkable
class CredentialRenderer(Protocol):
    def render(
        self,
        *,
        credential_id: str,
        subject_name: str,
        subject_id: str,
        course: str,
        fingerprint: str,
    ) -> RenderedDocument: ...


class JsonCredentialRenderer:
    def __init__(self, *, verify_base_url: str, issuer: str = "certchain") -> None:
        self._verify_base_url = verify_base_url.rstrip("/")
        self._issuer = issuer

    def verification_url(self, credential_id: str) -> str:
        return f"{self._verify_base_url}/?id={credential_id}"

    def render(
        self,
        *,
        credential_id: str,
        subject_name: str,
        subject_id: str,
        course: str,
        fingerprint: str,
    ) -> RenderedDocument:
        document = {
            "type": "CertificateOfCompletion",
            "issuer": self._issuer,
            "credential_id": credential_id,
            "subject": {"id": subject_id, "name": subject_name},
            "course": course,
            "fingerprint": fingerprint,
            "verification_url": self.verification_url(credential_id),
        }
        content = json.dumps(
            document, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")
        return RenderedDocument(filename=f"{credential_id}.json", content=content)

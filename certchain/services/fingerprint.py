"""Credential fingerprint: the value committed to the verification ledger.

The three identifying fields are serialized as a JSON array before
hashing.  A plain ``f"{name}-{id}-{course}"`` join would make
("A-B", "C", ...) and ("A", "B-C", ...) collide; the JSON encoding
quotes each field so the boundaries are unambiguous.
"""

from __future__ import annotations

import hashlib
import json

from certchain.core.errors import ValidationError

FINGERPRINT_PREFIX = "0x"
FINGERPRINT_LENGTH = len(FINGERPRINT_PREFIX) + 64


def fingerprint(name: str, subject_id: str, course: str) -> str:
    for field, value in (("name", name), ("subject_id", subject_id), ("course", course)):
        if not value or not value.strip():
            raise ValidationError(f"{field} must be non-empty to fingerprint")

    canonical = json.dumps([name, subject_id, course], ensure_ascii=False)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return FINGERPRINT_PREFIX + digest


def recompute_fingerprint(record) -> str | None:
    """Fingerprint of a stored record's own fields, or None if they cannot be hashed."""
    try:
        return fingerprint(record.subject_name, record.subject_id, record.course)
    except ValidationError:
        return None

from __future__ import annotations

import logging
import re

from certchain.core.errors import NotFoundError, ValidationError
from certchain.models.institution import Institution
from certchain.repos.registry import CredentialRegistry
from certchain.services.ledger import VerificationLedger

logger = logging.getLogger(__name__)

_IDENTITY_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_identity(identity: str) -> str:
    identity = (identity or "").strip()
    if not _IDENTITY_RE.match(identity):
        raise ValidationError("identity must be a 0x-prefixed 40-hex-digit address")
    return identity.lower()


class InstitutionsService:
    def __init__(
        self, *, registry: CredentialRegistry, ledger: VerificationLedger
    ) -> None:
        self._registry = registry
        self._ledger = ledger

    async def add(self, *, name: str, identity: str) -> Institution:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name must be non-empty")
        institution = Institution.new(name=name, identity=normalize_identity(identity))
        await self._registry.add_institution(institution)
        logger.info("Registered institution %s (%s)", name, institution.identity)
        return institution

    async def list(self) -> list[Institution]:
        return await self._registry.list_institutions()

    async def grant_minter(self, identity: str) -> Institution:
        """Authorize ``identity`` to commit on the ledger, then record it.

        The ledger goes first: if it is down the registry is unchanged and
        the call can simply be repeated.
        """
        identity = normalize_identity(identity)
        if await self._registry.get_institution(identity) is None:
            raise NotFoundError(f"institution {identity} not found")

        ledger_ref = await self._ledger.grant_minter(identity)
        updated = await self._registry.set_minter(identity)
        if updated is None:
            raise NotFoundError(f"institution {identity} not found")
        logger.info("Granted minter role to %s (ledger ref %s)", identity, ledger_ref)
        return updated

"""Build every long-lived client handle from Settings.

The API lifespan and the worker both call ``build_services`` and own the
result for the life of the process; tests build one from in-memory
parts with ``in_memory_services``.  Backing stores whose URL is unset
fall back to their in-memory implementation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from certchain.core.config import Settings
from certchain.repos.registry import CredentialRegistry, InMemoryCredentialRegistry
from certchain.services.archive import (
    ContentArchive,
    HttpContentArchive,
    InMemoryContentArchive,
)
from certchain.services.institutions_service import InstitutionsService
from certchain.services.lease import InMemoryLeaseManager, LeaseManager, RedisLeaseManager
from certchain.services.ledger import (
    HttpVerificationLedger,
    InMemoryVerificationLedger,
    VerificationLedger,
)
from certchain.services.orchestrator import IssuanceOrchestrator
from certchain.services.reconciliation import ReconciliationService
from certchain.services.renderer import CredentialRenderer, JsonCredentialRenderer
from certchain.services.subjects_service import SubjectsService
from certchain.services.task_queue import InMemoryTaskQueue, RedisTaskQueue, TaskQueue
from certchain.services.verification import VerificationService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    registry: CredentialRegistry
    ledger: VerificationLedger
    archive: ContentArchive
    renderer: CredentialRenderer
    lease: LeaseManager
    task_queue: TaskQueue
    orchestrator: IssuanceOrchestrator
    verifier: VerificationService
    reconciler: ReconciliationService
    subjects: SubjectsService
    institutions: InstitutionsService
    redis: Any | None = None
    engine: Any | None = None
    _closed: bool = field(default=False, repr=False)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.orchestrator.drain()
        await self.ledger.close()
        await self.archive.close()
        if self.redis is not None:
            await self.redis.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def assemble(
    *,
    registry: CredentialRegistry,
    ledger: VerificationLedger,
    archive: ContentArchive,
    renderer: CredentialRenderer,
    lease: LeaseManager,
    task_queue: TaskQueue,
    lease_ttl_seconds: float = 300.0,
    redis: Any | None = None,
    engine: Any | None = None,
) -> Services:
    """Wire the domain services on top of the given store handles."""
    orchestrator = IssuanceOrchestrator(
        registry=registry,
        ledger=ledger,
        archive=archive,
        renderer=renderer,
        lease=lease,
        task_queue=task_queue,
        lease_ttl_seconds=lease_ttl_seconds,
    )
    return Services(
        registry=registry,
        ledger=ledger,
        archive=archive,
        renderer=renderer,
        lease=lease,
        task_queue=task_queue,
        orchestrator=orchestrator,
        verifier=VerificationService(registry=registry, ledger=ledger, archive=archive),
        reconciler=ReconciliationService(
            registry=registry,
            ledger=ledger,
            lease=lease,
            orchestrator=orchestrator,
            lease_ttl_seconds=lease_ttl_seconds,
        ),
        subjects=SubjectsService(registry),
        institutions=InstitutionsService(registry=registry, ledger=ledger),
        redis=redis,
        engine=engine,
    )


def in_memory_services(
    *,
    verify_base_url: str = "http://localhost:5173",
    gateway_url: str = "http://localhost:8080/ipfs",
    **overrides: Any,
) -> Services:
    """Fully in-process wiring.  Any store handle can be overridden."""
    parts: dict[str, Any] = {
        "registry": InMemoryCredentialRegistry(),
        "ledger": InMemoryVerificationLedger(),
        "archive": InMemoryContentArchive(gateway_url),
        "renderer": JsonCredentialRenderer(verify_base_url=verify_base_url),
        "lease": InMemoryLeaseManager(),
        "task_queue": InMemoryTaskQueue(),
    }
    parts.update(overrides)
    return assemble(**parts)


def build_services(settings: Settings) -> Services:
    registry: CredentialRegistry
    engine = None
    if settings.database_url:
        from certchain.db.engine import create_engine, create_session_factory
        from certchain.repos.pg_registry import PgCredentialRegistry

        engine = create_engine(settings.database_url, echo=settings.is_dev)
        registry = PgCredentialRegistry(create_session_factory(engine))
    else:
        logger.warning("DATABASE_URL not set; using in-memory registry")
        registry = InMemoryCredentialRegistry()

    redis = None
    lease: LeaseManager
    task_queue: TaskQueue
    if settings.redis_url:
        from certchain.db.redis import create_redis

        redis = create_redis(settings.redis_url)
        lease = RedisLeaseManager(redis)
        task_queue = RedisTaskQueue(redis)
    else:
        logger.warning(
            "REDIS_URL not set; leases and task queue are per-process and "
            "reconciliation runs inside the API"
        )
        lease = InMemoryLeaseManager()
        task_queue = InMemoryTaskQueue()

    ledger: VerificationLedger
    if settings.ledger_url:
        ledger = HttpVerificationLedger(
            settings.ledger_url,
            api_key=settings.ledger_api_key,
            timeout=settings.external_timeout_seconds,
            confirm_timeout=settings.ledger_confirm_timeout_seconds,
        )
    else:
        logger.warning("LEDGER_URL not set; using in-memory ledger")
        ledger = InMemoryVerificationLedger()

    archive: ContentArchive
    if settings.archive_url:
        archive = HttpContentArchive(
            settings.archive_url,
            gateway_url=settings.archive_gateway_url,
            api_key=settings.archive_api_key,
            timeout=settings.external_timeout_seconds,
        )
    else:
        logger.warning("ARCHIVE_URL not set; using in-memory archive")
        archive = InMemoryContentArchive(settings.archive_gateway_url)

    return assemble(
        registry=registry,
        ledger=ledger,
        archive=archive,
        renderer=JsonCredentialRenderer(verify_base_url=settings.verify_base_url),
        lease=lease,
        task_queue=task_queue,
        lease_ttl_seconds=settings.lease_ttl_seconds,
        redis=redis,
        engine=engine,
    )

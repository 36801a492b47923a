from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from certchain.container import Services, in_memory_services
from certchain.main import app
from certchain.services import token_service
from certchain.services.orchestrator import IssuanceOrchestrator

# Ensure repo root is on sys.path so `import certchain` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch: pytest.MonkeyPatch) -> None:
    """Inline completion retries back off for real; not in tests."""
    monkeypatch.setattr(IssuanceOrchestrator, "_BASE_DELAY_S", 0.0)


@pytest.fixture
def services() -> Services:
    return in_memory_services()


@pytest.fixture
def client(services: Services) -> Iterator[TestClient]:
    app.state.services = services
    yield TestClient(app)
    app.state.services = None


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


@pytest.fixture
def token() -> str:
    """Token without the admin role."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    return mint_token(username="test-admin", roles=["admin"])


@pytest.fixture
def admin_headers(admin_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_token}"}


def enrolled(
    services: Services,
    subject_id: str = "S-1",
    course: str = "Blockchain 101",
    *,
    name: str = "Ada Lovelace",
    contact: str | None = None,
) -> None:
    """Register a subject and enroll them in one course."""

    async def _go() -> None:
        await services.subjects.register(
            subject_id=subject_id, name=name, contact=contact
        )
        await services.subjects.enroll(subject_id, course)

    asyncio.run(_go())

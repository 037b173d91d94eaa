"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator

import pytest
from fastapi.testclient import TestClient

ROOT_DIR = Path(__file__).resolve().parents[1]
for path in (ROOT_DIR, ROOT_DIR / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

os.environ.setdefault("STORE_BACKEND", "memory")

from app.core.security import create_access_token  # noqa: E402
from app.main import app  # noqa: E402
from app.services.accounts import PROFILES  # noqa: E402

from guidelight.store import MemoryDocumentStore  # noqa: E402

ProfileFactory = Callable[..., Awaitable[dict[str, Any]]]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def store() -> MemoryDocumentStore:
    """Provide an empty in-memory document store."""

    return MemoryDocumentStore()


@pytest.fixture()
def make_profile(store: MemoryDocumentStore) -> ProfileFactory:
    """Insert a profile document directly and return it with its id."""

    async def factory(user_id: str, username: str | None = None, **fields: Any) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        data = {
            "username": username or user_id,
            "username_lower": (username or user_id).lower(),
            "display_name": username or user_id,
            "email": f"{user_id}@example.com",
            "avatar_url": None,
            "bio": "",
            "skills": [],
            "role": None,
            "online": False,
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        await store.set(PROFILES, user_id, data)
        return {"id": user_id, **data}

    return factory


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """Yield a TestClient; startup attaches a fresh in-memory store."""

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers() -> Callable[[str], dict[str, str]]:
    """Build bearer headers for a profile id."""

    def build(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}

    return build

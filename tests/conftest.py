"""
tests/conftest.py -- Shared test fixtures for PatronAuth integration tests.

This module provides:
  - FakeIls: in-process stand-in for the Alma client. It writes the same
    profile cache keys on login that ils/alma.py writes, so the evaluator
    sees exactly what it would see in production.
  - _patch_lifespan(): wires test collaborators into app.state, bypassing
    real startup (no Alma, no files outside tmp_path).
  - auth_client: (client, ils, cache, patron_store) per test.

Environment variables must be set before any app import: the rate limit is
raised so a test module can hit the auth endpoint freely.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# Must be set before api.main is imported (get_settings() is cached).
os.environ.setdefault("AUTH_RATE_LIMIT", "10000/minute")
os.environ.setdefault("ILS_API_KEY", "test-key")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.identity import AuthManager
from auth.store import PatronStore
from cache.keys import PROFILE_EXPIRY_DATE, PROFILE_GROUP_CODE, PROFILE_GROUP_DESC, profile_cache_key
from cache.store import ObjectCache
from core.errors import InvalidCredentials
from core.evaluator import PatronAuthEvaluator
from core.models import Patron

# ---------------------------------------------------------------------------
# Fake ILS
# ---------------------------------------------------------------------------


class FakeIls:
    """Minimal Alma stand-in: patrons live in a dict, blocks can be made to fail."""

    def __init__(self, cache: ObjectCache) -> None:
        self.cache = cache
        self.patrons: dict[str, dict] = {}
        self.blocks_error: Exception | None = None
        self.block_calls = 0

    def add_patron(
        self,
        username: str,
        password: str,
        group_code: str | None = None,
        group_desc: str | None = None,
        expiry_date: str | None = None,
        blocks: tuple[str, ...] = (),
    ) -> None:
        self.patrons[username] = {
            "password": password,
            "group_code": group_code,
            "group_desc": group_desc,
            "expiry_date": expiry_date,
            "blocks": list(blocks),
        }

    def patron_login(self, username: str, password: str) -> Patron:
        patron = self.patrons.get(username)
        if patron is None or patron["password"] != password:
            raise InvalidCredentials()
        self.cache.set(profile_cache_key(username, PROFILE_GROUP_CODE), patron["group_code"])
        self.cache.set(profile_cache_key(username, PROFILE_GROUP_DESC), patron["group_desc"])
        self.cache.set(profile_cache_key(username, PROFILE_EXPIRY_DATE), patron["expiry_date"])
        return Patron(username=username)

    def get_account_blocks(self, username: str) -> list[str]:
        self.block_calls += 1
        if self.blocks_error is not None:
            raise self.blocks_error
        return list(self.patrons[username]["blocks"])

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Lifespan patching
# ---------------------------------------------------------------------------


def _patch_lifespan(ils: FakeIls, cache: ObjectCache, patron_store: PatronStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task the same way production does.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.cache = cache
        app.state.patron_store = patron_store
        app.state.ils = ils
        app.state.auth_manager = AuthManager(ils, patron_store=patron_store, cache=cache, enabled=True)
        app.state.evaluator = PatronAuthEvaluator(app.state.auth_manager, ils, cache)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def cache(tmp_path) -> Generator[ObjectCache, None, None]:
    store = ObjectCache(tmp_path / "cache.db")
    yield store
    store.close()


@pytest.fixture
def patron_store(tmp_path) -> Generator[PatronStore, None, None]:
    store = PatronStore(f"sqlite:///{tmp_path / 'patrons.db'}")
    yield store
    store.close()


@pytest.fixture
def fake_ils(cache: ObjectCache) -> FakeIls:
    ils = FakeIls(cache)
    ils.add_patron("jdoe", "secret", group_code="STUDENT", group_desc="Student", expiry_date="2099-12-31")
    ils.add_patron("$svc1", "svcpass", group_code="STAFF", expiry_date="2099-01-01")
    ils.add_patron("expired", "secret", group_code="STUDENT", expiry_date="2001-06-30")
    ils.add_patron("blocked", "secret", expiry_date="2099-12-31", blocks=("Overdue items", "Unpaid fees"))
    return ils


@pytest.fixture
def auth_client(
    fake_ils: FakeIls, cache: ObjectCache, patron_store: PatronStore
) -> Generator[tuple[TestClient, FakeIls, ObjectCache, PatronStore], None, None]:
    """Yield (client, ils, cache, patron_store) wired into the real FastAPI app."""
    app.router.lifespan_context = _patch_lifespan(fake_ils, cache, patron_store)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, fake_ils, cache, patron_store

"""
Pytest configuration and fixtures for Deckhand tests.

No pytest-asyncio: coroutines are driven with asyncio.run, and every test
that touches the database gets a fresh in-memory SQLite engine created
inside that same event loop.
"""

import asyncio
import os

import pytest

# Set test environment before importing deckhand modules
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["FF_USE_AUTH0"] = "false"
os.environ["FF_USE_REDIS"] = "false"
os.environ["FF_USE_REFERENCE_LOOKUP"] = "false"
os.environ["READ_RETRY_DELAY_SECONDS"] = "0"
os.environ["HANDOFF_WAIT_SECONDS"] = "1"
os.environ["SESSION_LOCK_WAIT_SECONDS"] = "0.2"

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import deckhand.models  # noqa: E402,F401
from deckhand.core.config import get_settings  # noqa: E402
from deckhand.core.database import Base  # noqa: E402
from deckhand.core.errors import ProviderError  # noqa: E402
from deckhand.core.flags import get_flags  # noqa: E402
from deckhand.services.provider import AIProvider, get_provider  # noqa: E402


class ScriptedProvider(AIProvider):
    """Returns canned responses in order and records every prompt it was given."""

    name = "scripted"

    def __init__(self, responses=None, default="Okay, tell me more."):
        self.responses = list(responses or [])
        self.default = default
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            return self.default
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FailingProvider(AIProvider):
    async def generate(self, prompt: str) -> str:
        raise ProviderError("provider down")


def tool_call(name: str, arguments: dict) -> str:
    """A provider response containing one fenced tool call."""
    import json
    return f"Saving that now.\n```tool_call\n{json.dumps({'name': name, 'arguments': arguments})}\n```"


def run_with_factory(fn):
    """Run `await fn(factory)` against a fresh in-memory database.

    For tests that need more than one DB session, like two requests at once.
    """

    async def _run():
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(bind=engine, expire_on_commit=False)
        try:
            return await fn(factory)
        finally:
            await engine.dispose()

    return asyncio.run(_run())


def run_with_db(fn):
    """Run `await fn(db)` against a fresh in-memory database."""

    async def with_db(factory):
        async with factory() as db:
            return await fn(db)

    return run_with_factory(with_db)


def run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings and flags are cached; reset them around every test."""
    get_settings.cache_clear()
    get_flags.cache_clear()
    get_provider.cache_clear()
    yield
    get_settings.cache_clear()
    get_flags.cache_clear()
    get_provider.cache_clear()


@pytest.fixture
def provider():
    return ScriptedProvider()

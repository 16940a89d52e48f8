"""
Shared fixtures for the Odrna test suite.

No test talks to a real service: the completion model is a fake object
and storage is in memory.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Optional

import pytest

from odrna.audit import AuditLogger
from odrna.config import AppSettings, GeminiSettings, SyncSettings
from odrna.services.storage import InMemoryBackend, InMemoryHostedStore
from odrna.store import EntityStore


# Monday
FIXED_NOW = datetime(2024, 1, 15, 10, 30)


class FakeResponse:
    def __init__(self, text: str):
        self.text = text


class FakeModel:
    """Stands in for a Gemini GenerativeModel."""

    def __init__(
        self,
        text: Optional[str] = None,
        error: Optional[Exception] = None,
        delay: float = 0,
    ):
        self.text = text
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []

    @classmethod
    def replying(cls, actions: list[Any], response: str = "Pronto!") -> "FakeModel":
        return cls(text=json.dumps({"actions": actions, "response": response}, ensure_ascii=False))

    async def generate_content_async(self, prompt: str) -> FakeResponse:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return FakeResponse(self.text)


@pytest.fixture
def store() -> EntityStore:
    return EntityStore(InMemoryBackend())


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(app_environment="test")


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(enabled=True, timeout_seconds=1.0)


@pytest.fixture
def gemini_settings() -> GeminiSettings:
    return GeminiSettings(api_key="test-key", request_timeout_seconds=1.0)


@pytest.fixture
def hosted_store() -> InMemoryHostedStore:
    return InMemoryHostedStore()


@pytest.fixture
def audit_logger() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW

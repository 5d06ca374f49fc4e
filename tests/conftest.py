"""Shared fixtures for importer tests."""

import json

import httpx
import pytest

from catalog_importer.config import ImporterSettings
from catalog_importer.store import LocalCatalog


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def classifier_response(pairs: list[tuple[str, float]], status_code: int = 200) -> httpx.Response:
    """Build a classifier reply in the list-of-objects shape."""
    return httpx.Response(status_code, json=[{"label": label, "score": score} for label, score in pairs])


class ScriptedTransport(httpx.MockTransport):
    """MockTransport that replays queued responses and records request bodies.

    Each queued item is an ``httpx.Response`` or an exception instance to
    raise. Once the queue is empty, ``default`` answers every request.
    """

    def __init__(self, responses=None, default: httpx.Response | None = None):
        self.responses = list(responses or [])
        self.default = default
        self.requests: list[dict] = []
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.responses:
            item = self.responses.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            raise AssertionError("Unexpected classifier request")
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item.status_code, content=item.content, headers=item.headers)


@pytest.fixture
def catalog():
    """In-memory local catalog."""
    return LocalCatalog(path=None)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def ai_settings():
    """Settings with AI switched on and a token configured."""
    return ImporterSettings(classifier_token="test-token", ai_enabled=True)


@pytest.fixture
def no_ai_settings():
    return ImporterSettings()

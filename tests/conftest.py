"""Shared fixtures for the Codex gateway test suite."""

import json
import logging

import httpx
import pytest

from codex_gateway.config.settings import Settings, get_settings
from codex_gateway.logging.audit import JSONFormatter, get_audit_logger
from codex_gateway.main import create_app
from codex_gateway.proxy.forwarder import UpstreamForwarder
from codex_gateway.proxy.models import ModelMapper
from codex_gateway.security.credentials import Credential

UPSTREAM_TOKEN = "sk-upstream-secret-0123456789"
UPSTREAM_BASE_URL = "https://upstream.test"


@pytest.fixture
def credential() -> Credential:
    return Credential(token=UPSTREAM_TOKEN, locator="$.tokens.access_token")


@pytest.fixture
def mapper() -> ModelMapper:
    return ModelMapper()


@pytest.fixture
def chat_request_body() -> dict:
    """Standard chat completions request body."""
    return {
        "model": "gpt-4.1",
        "messages": [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "hello"},
        ],
        "stream": False,
        "temperature": 0.2,
    }


@pytest.fixture
def auth_file(tmp_path):
    """Factory fixture: write a JSON document to auth.json and return its path."""
    def _write(document) -> str:
        path = tmp_path / "auth.json"
        text = document if isinstance(document, str) else json.dumps(document)
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(CODEX_UPSTREAM_BEARER="sk-x", NON_STREAMING_TIMEOUT="5")
    """
    # Start from defaults regardless of the developer's environment
    for name in Settings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)

    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


@pytest.fixture
def make_forwarder(credential):
    """Factory fixture: forwarder whose upstream is an httpx.MockTransport handler."""
    def _make(handler, **kwargs) -> UpstreamForwarder:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return UpstreamForwarder(
            client, base_url=UPSTREAM_BASE_URL, credential=credential, **kwargs
        )

    return _make


@pytest.fixture
def gateway_client(mapper):
    """Factory fixture: httpx AsyncClient wired to the app with an injected forwarder.

    Use as ``async with gateway_client(forwarder) as client:``.
    """
    def _make(forwarder: UpstreamForwarder) -> httpx.AsyncClient:
        app = create_app(mapper=mapper, forwarder=forwarder)
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    return _make


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.setFormatter(JSONFormatter())
        self.lines: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(self.format(record))


@pytest.fixture
def captured_logs():
    """Formatted JSON lines emitted on the gateway logger during the test."""
    logger = get_audit_logger()
    handler = _ListHandler()
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield handler.lines
    logger.removeHandler(handler)
    logger.setLevel(previous_level)


def sse_events(*payloads: dict) -> list[bytes]:
    """Encode payloads as SSE ``data:`` events, one bytes object per event."""
    return [f"data: {json.dumps(p)}\n\n".encode() for p in payloads]

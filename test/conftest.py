from __future__ import annotations

from pathlib import Path
from typing import Iterable

import httpx
import pytest
from dotenv import load_dotenv

# Load test overrides before any settings object is created
TEST_ROOT = Path(__file__).resolve().parent
load_dotenv(TEST_ROOT / ".env", override=False)

ALLOWED_URL_PREFIXES: Iterable[str] = (
    "http://localhost",
    "http://127.0.0.1",
    "http://test",
    "/",
)


@pytest.fixture(autouse=True)
def _offline_http_guard(monkeypatch: pytest.MonkeyPatch):
    """Fail any test that tries to reach a real host; the ASGI test clients stay allowed."""
    orig_async = httpx.AsyncClient.request

    async def offline_async(self, method, url, *args, **kwargs):
        url_str = str(self.base_url.join(url))
        if any(url_str.startswith(p) for p in ALLOWED_URL_PREFIXES):
            return await orig_async(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked in tests: {url_str}")

    monkeypatch.setattr(httpx.AsyncClient, "request", offline_async, raising=True)


@pytest.fixture(autouse=True)
def _in_memory_storage(monkeypatch: pytest.MonkeyPatch):
    """Keep the server on in-memory repositories unless a test opts into a database."""
    from execguard_ai.server.core import config

    monkeypatch.setattr(config.settings, "database_url", None)

"""
Test configuration and fixtures for the SEO Solver API.

Outbound HTTP never leaves the process: FakeWeb serves canned responses
through httpx.MockTransport and records every URL that was requested.
"""

from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient

from seo_solver import ratelimit
from seo_solver.main import app
from seo_solver.storage import MemoryStore, Repository


def _key(url: str) -> str:
    return url.split("?", 1)[0].rstrip("/")


class FakeWeb:
    """URL -> response spec (kwargs for httpx.Response, or an exception to raise)."""

    def __init__(self, pages: dict | None = None):
        self.pages = {_key(url): spec for url, spec in (pages or {}).items()}
        self.requests: list[httpx.Request] = []

    def serve(self, url: str, spec) -> None:
        self.pages[_key(url)] = spec

    @property
    def requested(self) -> list[str]:
        return [str(r.url) for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        spec = self.pages.get(_key(str(request.url)))
        if spec is None:
            return httpx.Response(404, text="Not Found")
        if isinstance(spec, Exception):
            raise spec
        if callable(spec):
            return spec(request)
        return httpx.Response(**spec)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def page(html: str, status_code: int = 200, headers: dict | None = None) -> dict:
    return {"status_code": status_code, "text": html, "headers": headers or {}}


def redirect(location: str, status_code: int = 301) -> dict:
    return {"status_code": status_code, "headers": {"location": location}}


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Deterministic configuration for every test."""
    monkeypatch.setenv("API_SECRET_KEY", "")
    monkeypatch.setenv("PAGESPEED_API_KEY", "")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "client-secret")
    monkeypatch.setenv("GOOGLE_REDIRECT_URI", "http://testserver/auth/google/callback")
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "0")
    monkeypatch.setenv("SCHEDULER_INTERVAL_SECONDS", "0")
    ratelimit.reset()
    yield
    ratelimit.reset()


@pytest.fixture
def repo() -> Repository:
    return Repository(MemoryStore())


@pytest.fixture
def web() -> FakeWeb:
    """The FakeWeb wired into the app for API tests."""
    return FakeWeb()


@pytest.fixture
def client(repo, web) -> Generator[TestClient, None, None]:
    app.state.repository = repo
    http_client = web.client()
    app.state.http_client = http_client
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
        test_client.portal.call(http_client.aclose)
    app.state.http_client = None

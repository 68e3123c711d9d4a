"""Admission control wired into HTTP routes."""

from __future__ import annotations

import threading
from unittest.mock import Mock

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from admission.adapters.rate_limit.base import CounterStore
from admission.adapters.rate_limit.in_memory import InMemoryCounterStore
from admission.core.config import settings
from admission.core.errors import StoreUnavailableError
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.policies import PolicyName
from admission.core.rate_limit import admit, configure_rate_limiting, rate_limit, with_rate_limit
from admission.services.rate_limiter import RateLimiter

CLIENT = {"X-Forwarded-For": "203.0.113.7"}


def build_app(store: CounterStore, clock: Mock) -> tuple[FastAPI, Mock]:
    app = FastAPI()
    configure_rate_limiting(app, store, limiter=RateLimiter(store, clock=clock))
    setup_exception_handlers(app)
    calls = Mock()

    @app.post("/login", dependencies=[Depends(rate_limit(PolicyName.AUTH))])
    async def login():
        calls("login")
        return {"ok": True}

    async def submit(request: Request):
        calls("submit")
        if request.headers.get("X-Crash"):
            raise RuntimeError("handler failed")
        return JSONResponse({"ok": True})

    app.add_route("/submit", with_rate_limit(PolicyName.MUTATION, submit), methods=["POST"])
    return app, calls


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def app_and_calls(store: InMemoryCounterStore, clock: Mock) -> tuple[FastAPI, Mock]:
    return build_app(store, clock)


@pytest.fixture
def client(app_and_calls) -> TestClient:
    return TestClient(app_and_calls[0])


class TestDependency:
    def test_allowed_response_carries_quota_headers(self, client: TestClient) -> None:
        response = client.post("/login", headers=CLIENT)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"
        assert response.headers["X-RateLimit-Reset"] == "1970-01-01T00:17:40.000Z"

    def test_eleventh_request_is_rejected(self, client: TestClient, app_and_calls, clock: Mock) -> None:
        for _ in range(10):
            assert client.post("/login", headers=CLIENT).status_code == 200

        clock.return_value = 1002.0
        response = client.post("/login", headers=CLIENT)

        assert response.status_code == 429
        assert response.json() == {
            "error": "Too Many Requests",
            "message": "Rate limit exceeded. Please try again later.",
            "retryAfter": 58,
            "resetAt": "1970-01-01T00:17:40.000Z",
        }
        assert response.headers["Retry-After"] == "58"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert app_and_calls[1].call_count == 10

    def test_clients_are_counted_separately(self, client: TestClient) -> None:
        for _ in range(10):
            client.post("/login", headers=CLIENT)

        other = client.post("/login", headers={"X-Forwarded-For": "198.51.100.2"})

        assert other.status_code == 200
        assert other.headers["X-RateLimit-Remaining"] == "9"

    def test_disabled_limiting_skips_checks(
        self, client: TestClient, store: InMemoryCounterStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_enabled", False)

        response = client.post("/login", headers=CLIENT)

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        assert len(store) == 0


class TestWrappedHandler:
    def test_wrapped_handler_gets_headers(self, client: TestClient) -> None:
        response = client.post("/submit", headers=CLIENT)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "30"
        assert response.headers["X-RateLimit-Remaining"] == "29"

    def test_handler_not_invoked_when_denied(self, client: TestClient, app_and_calls) -> None:
        for _ in range(30):
            client.post("/submit", headers=CLIENT)

        response = client.post("/submit", headers=CLIENT)

        assert response.status_code == 429
        assert response.json()["retryAfter"] == 60
        assert app_and_calls[1].call_count == 30

    def test_handler_exception_propagates(self, client: TestClient) -> None:
        with pytest.raises(RuntimeError, match="handler failed"):
            client.post("/submit", headers={**CLIENT, "X-Crash": "1"})

    def test_policies_do_not_share_counters(self, client: TestClient) -> None:
        for _ in range(10):
            client.post("/login", headers=CLIENT)

        assert client.post("/submit", headers=CLIENT).status_code == 200


class TestFailOpen:
    def test_store_error_lets_request_through(self, clock: Mock) -> None:
        broken = Mock(spec=CounterStore)
        broken.run_transaction.side_effect = StoreUnavailableError(
            code="store_unavailable", message="connection refused"
        )
        app, calls = build_app(broken, clock)

        response = TestClient(app).post("/login", headers=CLIENT)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        calls.assert_called_once_with("login")

    def test_slow_store_times_out_and_fails_open(
        self, clock: Mock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        release = threading.Event()
        slow = Mock(spec=CounterStore)
        slow.run_transaction.side_effect = lambda doc_id, body: release.wait(0.5)
        monkeypatch.setattr(settings.rate_limit, "check_timeout_seconds", 0.05)
        app, calls = build_app(slow, clock)

        try:
            response = TestClient(app).post("/submit", headers=CLIENT)
        finally:
            release.set()

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "30"
        calls.assert_called_once_with("submit")


@pytest.mark.asyncio
async def test_admit_returns_failed_open_decision(clock: Mock) -> None:
    broken = Mock(spec=CounterStore)
    broken.run_transaction.side_effect = StoreUnavailableError(
        code="store_unavailable", message="quota exceeded"
    )
    app, _ = build_app(broken, clock)
    request = Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": [],
            "client": ("192.0.2.10", 5000),
            "app": app,
        }
    )

    decision = await admit(request, PolicyName.BULK)

    assert decision.allowed is True
    assert decision.failed_open is True
    assert decision.remaining == -1
    assert decision.reset_at_ms == 1_000_000 + 60_000

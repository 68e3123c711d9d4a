"""Request correlation and access logging on admission-controlled routes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from admission.adapters.rate_limit.in_memory import InMemoryCounterStore
from admission.core.app_factory import create_app
from admission.core.config import settings

TASK_KEY = {"X-API-Key": "test-task-key-123", "X-Forwarded-For": "192.0.2.44"}


@pytest.fixture
def client() -> TestClient:
    # Built in setup so configure_logging runs before caplog attaches.
    return TestClient(create_app(store=InMemoryCounterStore()))


def test_request_id_echoed_on_rejection(client: TestClient) -> None:
    for _ in range(5):
        client.post("/v1/tasks/sweep-counters", headers=TASK_KEY)

    resp = client.post(
        "/v1/tasks/sweep-counters", headers={**TASK_KEY, "X-Request-ID": "req-429"}
    )

    assert resp.status_code == 429
    assert resp.headers["X-Request-ID"] == "req-429"
    assert resp.headers["X-Request-Duration-ms"]


def test_request_id_in_error_body(client: TestClient) -> None:
    resp = client.post("/v1/tasks/sweep-counters", headers={"X-Request-ID": "req-403"})

    assert resp.status_code == 403
    assert resp.headers["X-Request-ID"] == "req-403"
    assert resp.json()["error"]["request_id"] == "req-403"


def test_generated_ids_are_unique(client: TestClient) -> None:
    first = client.get("/health").headers["X-Request-ID"]
    second = client.get("/health").headers["X-Request-ID"]

    assert first and second and first != second


def test_configurable_header_name(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.log, "request_id_header", "X-Correlation-ID")

    resp = client.get("/health", headers={"X-Correlation-ID": "corr-1"})

    assert resp.headers["X-Correlation-ID"] == "corr-1"


def test_access_log_reports_remaining_quota(client: TestClient, caplog) -> None:
    with caplog.at_level("INFO", logger="admission.core.middleware"):
        client.post("/v1/tasks/sweep-counters", headers={**TASK_KEY, "X-Request-ID": "req-ok"})

    records = [r for r in caplog.records if r.getMessage() == "http.request"]
    assert len(records) == 1
    assert records[0].path == "/v1/tasks/sweep-counters"
    assert records[0].status_code == 200
    assert records[0].rate_limit_remaining == "4"

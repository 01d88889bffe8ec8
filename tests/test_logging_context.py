from __future__ import annotations

import json
import logging

import httpx
import pytest

from tenant_config.context import reset_correlation_id, reset_tenant_id, set_correlation_id, set_tenant_id
from tenant_config.logging import ContextFilter, JsonLogFormatter
from tenant_config.tenants.errors import TransportError
from tenant_config.tenants.transport import SessionTokens, SystemClientTransport


def _record(msg: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("tenant_config.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_context_filter_fills_correlation_and_tenant() -> None:
    correlation_token = set_correlation_id("corr-1")
    tenant_token = set_tenant_id("7")
    try:
        record = _record("hello")
        assert ContextFilter().filter(record) is True
    finally:
        reset_tenant_id(tenant_token)
        reset_correlation_id(correlation_token)

    assert getattr(record, "correlation_id") == "corr-1"
    assert getattr(record, "tenant_id") == "7"


def test_context_filter_keeps_explicit_tenant() -> None:
    tenant_token = set_tenant_id("7")
    try:
        record = _record("hello", tenant_id="9")
        ContextFilter().filter(record)
    finally:
        reset_tenant_id(tenant_token)

    assert getattr(record, "tenant_id") == "9"


def test_json_formatter_emits_known_fields_only() -> None:
    record = _record(
        "remote_request_completed",
        correlation_id="corr-2",
        tenant_id="3",
        operation="list_tenants",
        status_code=200,
        duration_ms=1.5,
        secret="do-not-log",
        error="x" * 600,
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "remote_request_completed"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "corr-2"
    assert payload["tenant_id"] == "3"
    assert payload["fields"]["operation"] == "list_tenants"
    assert payload["fields"]["status_code"] == 200
    assert "secret" not in payload["fields"]
    assert len(payload["fields"]["error"]) == 500


@pytest.mark.asyncio
async def test_remote_requests_forward_correlation_id_and_log_outcome(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    seen: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("X-Correlation-Id"))
        return httpx.Response(200, json={"clients": [], "total": 0})

    transport = SystemClientTransport("http://authority.test", transport=httpx.MockTransport(handler))
    token = set_correlation_id("corr-remote-1")
    try:
        await transport.list_tenants(SessionTokens(session_token="session-1", access_token="access-1"))
    finally:
        reset_correlation_id(token)

    assert seen == ["corr-remote-1"]
    records = [record for record in caplog.records if record.getMessage() == "remote_request_completed"]
    assert records
    assert any(
        getattr(record, "operation", None) == "list_tenants"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/system-clients"
        and getattr(record, "status_code", None) == 200
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


@pytest.mark.asyncio
async def test_rejected_requests_are_logged_with_error(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": "Forbidden"})

    transport = SystemClientTransport("http://authority.test", transport=httpx.MockTransport(handler))

    with pytest.raises(TransportError):
        await transport.delete_tenant("1", SessionTokens(session_token="session-1", access_token="access-1"))

    record = next(record for record in caplog.records if record.getMessage() == "remote_request_rejected")
    assert getattr(record, "error") == "Forbidden"
    assert getattr(record, "status_code") == 403

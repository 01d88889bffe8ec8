from __future__ import annotations

import httpx
import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from tenant_config.otel import setup_inmemory_otel
from tenant_config.tenants.errors import TransportError
from tenant_config.tenants.migrations import SchemaMigrator
from tenant_config.tenants.schemas import PersistedCacheEnvelope
from tenant_config.tenants.transport import SessionTokens, SystemClientTransport

from stub_authority import StubAuthority, create_stub_authority_app


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("tenant-config")
    exporter.clear()
    return exporter


@pytest.fixture()
def authority() -> StubAuthority:
    return StubAuthority()


@pytest.fixture()
def transport(authority: StubAuthority) -> SystemClientTransport:
    return SystemClientTransport(
        "http://authority.test",
        transport=httpx.ASGITransport(app=create_stub_authority_app(authority)),
    )


@pytest.mark.asyncio
async def test_remote_request_span_carries_route_and_status(
    transport: SystemClientTransport,
    authority: StubAuthority,
    span_exporter: InMemorySpanExporter,
) -> None:
    authority.seed_system_client({"id": 1, "name": "Acme"})

    await transport.list_tenants(SessionTokens(session_token="session-1", access_token="access-1"))

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "tenant_config.remote.list_tenants"]
    assert spans
    assert spans[-1].attributes.get("http.method") == "GET"
    assert spans[-1].attributes.get("http.route") == "/system-clients"
    assert spans[-1].attributes.get("http.status_code") == 200
    assert spans[-1].attributes.get("outcome") == "success"


@pytest.mark.asyncio
async def test_rejected_request_span_is_marked_as_error(
    transport: SystemClientTransport,
    authority: StubAuthority,
    span_exporter: InMemorySpanExporter,
) -> None:
    authority.seed_system_client({"id": 1, "name": "Acme"})
    authority.inject_failure("PATCH", "/system-clients/1/activate", status_code=502, error="Upstream down")

    with pytest.raises(TransportError):
        await transport.activate_tenant("1", SessionTokens(session_token="session-1", access_token="access-1"))

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "tenant_config.remote.activate_tenant"]
    assert spans
    assert spans[-1].attributes.get("http.route") == "/system-clients/1/activate"
    assert spans[-1].attributes.get("http.status_code") == 502
    assert spans[-1].attributes.get("outcome") == "error"


def test_cache_migration_span_records_versions(span_exporter: InMemorySpanExporter) -> None:
    SchemaMigrator().migrate(PersistedCacheEnvelope(version=1, state={"clients": [{"id": "1", "name": "Acme"}]}))

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "tenant_config.cache.migrate"]
    assert spans
    assert spans[-1].attributes.get("from_version") == 1
    assert spans[-1].attributes.get("to_version") == 3

from __future__ import annotations

import httpx
import pytest

from tenant_config.core.config import Settings
from tenant_config.tenants.errors import TransportError
from tenant_config.tenants.schemas import ConfigurationUpdate, LeadStatus, TaskStatus, TenantDraft, TenantUpdate
from tenant_config.tenants.transport import (
    ClientConfigurationTransport,
    SessionTokens,
    SystemClientTransport,
    build_transport,
)

from stub_authority import StubAuthority, create_stub_authority_app


TOKENS = SessionTokens(session_token="session-1", access_token="access-1")


@pytest.fixture()
def authority() -> StubAuthority:
    return StubAuthority()


@pytest.fixture()
def asgi_transport(authority: StubAuthority) -> httpx.ASGITransport:
    return httpx.ASGITransport(app=create_stub_authority_app(authority))


@pytest.fixture()
def system_transport(asgi_transport: httpx.ASGITransport) -> SystemClientTransport:
    return SystemClientTransport("http://authority.test", transport=asgi_transport)


@pytest.fixture()
def clients_transport(asgi_transport: httpx.ASGITransport) -> ClientConfigurationTransport:
    return ClientConfigurationTransport("http://authority.test", transport=asgi_transport)


@pytest.mark.asyncio
async def test_system_clients_round_trip(system_transport: SystemClientTransport, authority: StubAuthority) -> None:
    created_id = await system_transport.create_tenant(TenantDraft(name="acme", company_name="Acme Ltd"), TOKENS)
    assert created_id == "1"

    await system_transport.update_configuration(
        "1",
        ConfigurationUpdate(lead_statuses=[LeadStatus(id="1", name="Only", is_default=True, is_final=True)]),
        TOKENS,
    )
    await system_transport.deactivate_tenant("1", TOKENS)

    tenants = await system_transport.list_tenants(TOKENS)
    assert len(tenants) == 1
    assert tenants[0].company_name == "Acme Ltd"
    assert [status.name for status in tenants[0].lead_statuses] == ["Only"]
    assert len(tenants[0].customer_statuses) == 5
    assert tenants[0].is_active is False

    methods = [(method, path) for method, path, _ in authority.requests]
    assert methods == [
        ("POST", "/system-clients"),
        ("PUT", "/system-clients/1/config"),
        ("PATCH", "/system-clients/1/deactivate"),
        ("GET", "/system-clients"),
    ]
    await system_transport.close()


@pytest.mark.asyncio
async def test_auth_headers_are_sent(system_transport: SystemClientTransport, authority: StubAuthority) -> None:
    await system_transport.list_tenants(TOKENS)

    _, _, headers = authority.requests[0]
    assert headers == {"X-Session-Token": "session-1", "Authorization": "Bearer access-1"}


@pytest.mark.asyncio
async def test_delete_hides_tenant_from_listing(system_transport: SystemClientTransport, authority: StubAuthority) -> None:
    authority.seed_system_client({"id": 1, "name": "Acme"})
    authority.seed_system_client({"id": 2, "name": "Globex"})

    await system_transport.delete_tenant("1", TOKENS)

    tenants = await system_transport.list_tenants(TOKENS)
    assert [tenant.id for tenant in tenants] == ["2"]
    assert authority.system_clients[1]["is_deleted"] is True


@pytest.mark.asyncio
async def test_error_body_becomes_transport_error(system_transport: SystemClientTransport, authority: StubAuthority) -> None:
    authority.inject_failure("GET", "/system-clients", status_code=503, error="Maintenance window")

    with pytest.raises(TransportError) as exc_info:
        await system_transport.list_tenants(TOKENS)

    assert exc_info.value.message == "Maintenance window"
    assert exc_info.value.status_code == 503
    assert exc_info.value.operation == "list_tenants"
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_missing_session_is_rejected_by_authority(system_transport: SystemClientTransport) -> None:
    with pytest.raises(TransportError) as exc_info:
        await system_transport.update_tenant("1", TenantUpdate(name="x"), SessionTokens("", "access-1"))

    assert exc_info.value.status_code == 401
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_missing_access_token_is_rejected_by_authority(system_transport: SystemClientTransport) -> None:
    with pytest.raises(TransportError) as exc_info:
        await system_transport.list_tenants(SessionTokens("session-1", ""))

    assert exc_info.value.status_code == 401
    assert exc_info.value.message == "Access token required"


@pytest.mark.asyncio
async def test_task_statuses_are_written_to_the_client_record(
    system_transport: SystemClientTransport,
    authority: StubAuthority,
) -> None:
    authority.seed_system_client({"id": 1, "name": "Acme"})

    await system_transport.update_tenant(
        "1",
        TenantUpdate(task_statuses=[TaskStatus(id="1", name="Todo", is_default=True)]),
        TOKENS,
    )

    assert authority.system_clients[1]["task_statuses"][0]["name"] == "Todo"
    assert [(method, path) for method, path, _ in authority.requests] == [("PUT", "/system-clients/1")]


@pytest.mark.asyncio
async def test_configuration_endpoint_rejects_body_without_known_fields(
    system_transport: SystemClientTransport,
    authority: StubAuthority,
) -> None:
    authority.seed_system_client({"id": 1, "name": "Acme"})

    with pytest.raises(TransportError) as exc_info:
        await system_transport.update_configuration("1", ConfigurationUpdate(), TOKENS)

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "System client not found"


@pytest.mark.asyncio
async def test_unknown_tenant_is_a_404(system_transport: SystemClientTransport) -> None:
    with pytest.raises(TransportError) as exc_info:
        await system_transport.activate_tenant("77", TOKENS)

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Client not found"


@pytest.mark.asyncio
async def test_network_failure_uses_default_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport = SystemClientTransport("http://authority.test", transport=httpx.MockTransport(handler))

    with pytest.raises(TransportError) as exc_info:
        await transport.list_tenants(TOKENS)

    assert exc_info.value.message == "Failed to load clients"
    assert exc_info.value.status_code is None
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_undecodable_rows_are_skipped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"name": "no id"}, {"id": 3, "name": "Ok"}])

    transport = SystemClientTransport("http://authority.test", transport=httpx.MockTransport(handler))

    tenants = await transport.list_tenants(TOKENS)

    assert [tenant.id for tenant in tenants] == ["3"]


@pytest.mark.asyncio
async def test_listing_reads_clients_envelope() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"clients": [{"id": 3, "name": "Ok"}, {"id": 4, "name": "Also"}], "total": 2})

    transport = SystemClientTransport("http://authority.test", transport=httpx.MockTransport(handler))

    assert [tenant.name for tenant in await transport.list_tenants(TOKENS)] == ["Ok", "Also"]


@pytest.mark.asyncio
async def test_data_wrapped_listing_is_unwrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"id": 3, "name": "Ok"}]})

    transport = SystemClientTransport("http://authority.test", transport=httpx.MockTransport(handler))

    assert [tenant.name for tenant in await transport.list_tenants(TOKENS)] == ["Ok"]


@pytest.mark.asyncio
async def test_listing_without_rows_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"total": 0})

    transport = SystemClientTransport("http://authority.test", transport=httpx.MockTransport(handler))

    with pytest.raises(TransportError) as exc_info:
        await transport.list_tenants(TOKENS)

    assert exc_info.value.message == "Failed to load clients"


@pytest.mark.asyncio
async def test_created_id_is_read_from_client_envelope() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"client": {"id": 7, "name": "acme"}})

    transport = SystemClientTransport("http://authority.test", transport=httpx.MockTransport(handler))

    assert await transport.create_tenant(TenantDraft(name="acme"), TOKENS) == "7"


@pytest.mark.asyncio
async def test_clients_backend_writes_configuration_patches(
    clients_transport: ClientConfigurationTransport,
    authority: StubAuthority,
) -> None:
    created_id = await clients_transport.create_tenant(TenantDraft(name="initech", company_name="Initech"), TOKENS)
    assert created_id is not None

    current = (await clients_transport.list_tenants(TOKENS))[0]
    await clients_transport.update_tenant(created_id, TenantUpdate(primary_color="#000000"), TOKENS, current=current)
    await clients_transport.update_configuration(created_id, ConfigurationUpdate(features={"dialer": False}), TOKENS)
    await clients_transport.deactivate_tenant(created_id, TOKENS)

    tenant = (await clients_transport.list_tenants(TOKENS))[0]
    assert tenant.company_name == "Initech"
    assert tenant.primary_color == "#000000"
    assert tenant.features["dialer"].enabled is False
    assert tenant.is_active is False
    assert len(tenant.lead_statuses) == 12

    writes = [(method, path) for method, path, _ in authority.requests if method != "GET"]
    assert writes == [
        ("POST", "/clients"),
        ("PUT", f"/clients/{created_id}"),
        ("PUT", f"/clients/{created_id}"),
        ("PUT", f"/clients/{created_id}"),
    ]


def test_build_transport_follows_settings() -> None:
    system = build_transport(Settings(remote_backend="system_clients", api_base_url="http://a.test/api/"))
    clients = build_transport(Settings(remote_backend="clients", request_timeout_seconds=5))

    assert isinstance(system, SystemClientTransport)
    assert system.base_url == "http://a.test/api"
    assert isinstance(clients, ClientConfigurationTransport)
    assert clients.timeout == 5

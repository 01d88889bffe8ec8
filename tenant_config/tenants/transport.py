from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from tenant_config.context import get_correlation_id
from tenant_config.core.config import Settings, get_settings
from tenant_config.metrics import observe_remote_request, observe_soft_faults
from tenant_config.tenants.codec import (
    decode_client_configuration,
    decode_system_client,
    encode_client_configuration_draft,
    encode_client_configuration_update,
    encode_system_client_draft,
    encode_system_client_update,
)
from tenant_config.tenants.errors import TransportError
from tenant_config.tenants.features import FeatureFlagResolver
from tenant_config.tenants.schemas import ClientConfiguration, ConfigurationUpdate, TenantDraft, TenantUpdate


logger = logging.getLogger("tenant_config.transport")
tracer = trace.get_tracer("tenant_config.transport")

DEFAULT_ERROR_MESSAGES: dict[str, str] = {
    "list_tenants": "Failed to load clients",
    "create_tenant": "Failed to create client",
    "update_tenant": "Failed to update client",
    "delete_tenant": "Failed to delete client",
    "activate_tenant": "Failed to activate client",
    "deactivate_tenant": "Failed to deactivate client",
    "update_configuration": "Failed to update client configuration",
}


@dataclass(frozen=True)
class SessionTokens:
    session_token: str
    access_token: str


class SessionTokenProvider(Protocol):
    def get_tokens(self) -> SessionTokens | None: ...


class StaticSessionTokenProvider:
    def __init__(self, tokens: SessionTokens | None = None) -> None:
        self._tokens = tokens

    def get_tokens(self) -> SessionTokens | None:
        return self._tokens

    def set_tokens(self, tokens: SessionTokens | None) -> None:
        self._tokens = tokens


class TenantTransport(Protocol):
    async def list_tenants(self, tokens: SessionTokens) -> list[ClientConfiguration]: ...

    async def create_tenant(self, draft: TenantDraft, tokens: SessionTokens) -> str | None: ...

    async def update_tenant(
        self,
        tenant_id: str,
        update: TenantUpdate,
        tokens: SessionTokens,
        current: ClientConfiguration | None = None,
    ) -> None: ...

    async def delete_tenant(self, tenant_id: str, tokens: SessionTokens) -> None: ...

    async def activate_tenant(self, tenant_id: str, tokens: SessionTokens) -> None: ...

    async def deactivate_tenant(self, tenant_id: str, tokens: SessionTokens) -> None: ...

    async def update_configuration(
        self,
        tenant_id: str,
        update: ConfigurationUpdate,
        tokens: SessionTokens,
        current: ClientConfiguration | None = None,
    ) -> None: ...

    async def close(self) -> None: ...


def _auth_headers(tokens: SessionTokens) -> dict[str, str]:
    return {
        "X-Session-Token": tokens.session_token,
        "Authorization": f"Bearer {tokens.access_token}",
        "X-Correlation-Id": get_correlation_id() or str(uuid.uuid4()),
    }


def _error_message(response: httpx.Response, default: str) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return default, response.text or None
    if isinstance(body, dict):
        error = body.get("error") or body.get("detail") or body.get("message")
        if isinstance(error, str) and error:
            return error, body
    return default, body


class HttpTenantTransport:
    resource: str = ""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        resolver: FeatureFlagResolver | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.resolver = resolver or FeatureFlagResolver()
        self._transport = transport
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        tokens: SessionTokens,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        client = await self._get_client()
        default_message = DEFAULT_ERROR_MESSAGES.get(operation, "Request failed")
        started = time.perf_counter()

        with tracer.start_as_current_span(f"tenant_config.remote.{operation}") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.route", path)
            try:
                response = await client.request(method, path, json=json_data, headers=_auth_headers(tokens))
            except httpx.RequestError as exc:
                duration = time.perf_counter() - started
                observe_remote_request(operation, "network_error", duration)
                span.set_attribute("outcome", "network_error")
                logger.error(
                    "remote_request_failed",
                    extra={"operation": operation, "method": method, "path": path, "error": str(exc)},
                )
                raise TransportError(default_message, operation=operation, details=str(exc)) from exc

            duration = time.perf_counter() - started
            span.set_attribute("http.status_code", response.status_code)
            log_extra = {
                "operation": operation,
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 2),
            }

            if response.status_code >= 400:
                message, details = _error_message(response, default_message)
                observe_remote_request(operation, "error", duration)
                span.set_attribute("outcome", "error")
                logger.warning("remote_request_rejected", extra={**log_extra, "error": message})
                raise TransportError(message, status_code=response.status_code, operation=operation, details=details)

            observe_remote_request(operation, "success", duration)
            span.set_attribute("outcome", "success")
            logger.info("remote_request_completed", extra=log_extra)
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                return None

    def _decode_list(
        self,
        body: Any,
        decode: Callable[[dict[str, Any], FeatureFlagResolver], ClientConfiguration],
    ) -> list[ClientConfiguration]:
        if isinstance(body, dict):
            body = body.get("clients", body.get("data"))
        if not isinstance(body, list):
            raise TransportError(DEFAULT_ERROR_MESSAGES["list_tenants"], operation="list_tenants", details=body)

        tenants: list[ClientConfiguration] = []
        for row in body:
            try:
                tenants.append(decode(row, self.resolver))
            except (KeyError, TypeError, ValidationError) as exc:
                logger.warning("skipped undecodable tenant payload", extra={"operation": "list_tenants", "error": str(exc)})
                observe_soft_faults("undecodable_tenant")
        return tenants

    @staticmethod
    def _created_id(body: Any) -> str | None:
        if not isinstance(body, dict):
            return None
        row = body.get("client") if isinstance(body.get("client"), dict) else body
        if row.get("id") is not None:
            return str(row["id"])
        return None


class SystemClientTransport(HttpTenantTransport):
    resource = "/system-clients"

    async def list_tenants(self, tokens: SessionTokens) -> list[ClientConfiguration]:
        body = await self._request("list_tenants", "GET", self.resource, tokens)
        return self._decode_list(body, decode_system_client)

    async def create_tenant(self, draft: TenantDraft, tokens: SessionTokens) -> str | None:
        body = await self._request(
            "create_tenant", "POST", self.resource, tokens, encode_system_client_draft(draft, self.resolver)
        )
        return self._created_id(body)

    async def update_tenant(
        self,
        tenant_id: str,
        update: TenantUpdate,
        tokens: SessionTokens,
        current: ClientConfiguration | None = None,
    ) -> None:
        await self._request(
            "update_tenant",
            "PUT",
            f"{self.resource}/{tenant_id}",
            tokens,
            encode_system_client_update(update, self.resolver),
        )

    async def delete_tenant(self, tenant_id: str, tokens: SessionTokens) -> None:
        await self._request("delete_tenant", "DELETE", f"{self.resource}/{tenant_id}", tokens)

    async def activate_tenant(self, tenant_id: str, tokens: SessionTokens) -> None:
        await self._request("activate_tenant", "PATCH", f"{self.resource}/{tenant_id}/activate", tokens)

    async def deactivate_tenant(self, tenant_id: str, tokens: SessionTokens) -> None:
        await self._request("deactivate_tenant", "PATCH", f"{self.resource}/{tenant_id}/deactivate", tokens)

    async def update_configuration(
        self,
        tenant_id: str,
        update: ConfigurationUpdate,
        tokens: SessionTokens,
        current: ClientConfiguration | None = None,
    ) -> None:
        await self._request(
            "update_configuration",
            "PUT",
            f"{self.resource}/{tenant_id}/config",
            tokens,
            encode_system_client_update(update, self.resolver),
        )


class ClientConfigurationTransport(HttpTenantTransport):
    resource = "/clients"

    async def list_tenants(self, tokens: SessionTokens) -> list[ClientConfiguration]:
        body = await self._request("list_tenants", "GET", self.resource, tokens)
        return self._decode_list(body, decode_client_configuration)

    async def create_tenant(self, draft: TenantDraft, tokens: SessionTokens) -> str | None:
        body = await self._request(
            "create_tenant", "POST", self.resource, tokens, encode_client_configuration_draft(draft, self.resolver)
        )
        return self._created_id(body)

    async def update_tenant(
        self,
        tenant_id: str,
        update: TenantUpdate,
        tokens: SessionTokens,
        current: ClientConfiguration | None = None,
    ) -> None:
        await self._request(
            "update_tenant",
            "PUT",
            f"{self.resource}/{tenant_id}",
            tokens,
            encode_client_configuration_update(update, current, self.resolver),
        )

    async def delete_tenant(self, tenant_id: str, tokens: SessionTokens) -> None:
        await self._request("delete_tenant", "DELETE", f"{self.resource}/{tenant_id}", tokens)

    async def activate_tenant(self, tenant_id: str, tokens: SessionTokens) -> None:
        await self._request(
            "activate_tenant", "PUT", f"{self.resource}/{tenant_id}", tokens, {"configuration": {"isActive": True}}
        )

    async def deactivate_tenant(self, tenant_id: str, tokens: SessionTokens) -> None:
        await self._request(
            "deactivate_tenant", "PUT", f"{self.resource}/{tenant_id}", tokens, {"configuration": {"isActive": False}}
        )

    async def update_configuration(
        self,
        tenant_id: str,
        update: ConfigurationUpdate,
        tokens: SessionTokens,
        current: ClientConfiguration | None = None,
    ) -> None:
        await self._request(
            "update_configuration",
            "PUT",
            f"{self.resource}/{tenant_id}",
            tokens,
            encode_client_configuration_update(update, current, self.resolver),
        )


def build_transport(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    resolver: FeatureFlagResolver | None = None,
) -> HttpTenantTransport:
    settings = settings or get_settings()
    transport_cls: type[HttpTenantTransport] = (
        ClientConfigurationTransport if settings.remote_backend == "clients" else SystemClientTransport
    )
    return transport_cls(
        settings.api_base_url,
        timeout=settings.request_timeout_seconds,
        transport=transport,
        resolver=resolver,
    )

from __future__ import annotations

from typing import Any


class TenantConfigError(Exception):
    pass


class TransportError(TenantConfigError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        operation: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.operation = operation
        self.details = details

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class TenantNotFoundError(TenantConfigError):
    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"tenant {tenant_id} not found")
        self.tenant_id = tenant_id


class StatusNotFoundError(TenantConfigError):
    def __init__(self, kind: str, status_id: str) -> None:
        super().__init__(f"{kind} status {status_id} not found")
        self.kind = kind
        self.status_id = status_id


class TransitionNotAllowedError(TenantConfigError):
    def __init__(self, from_id: str, to_id: str, reason: str) -> None:
        super().__init__(f"transition {from_id} -> {to_id} not allowed: {reason}")
        self.from_id = from_id
        self.to_id = to_id
        self.reason = reason


class TemplateNotFoundError(TenantConfigError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"message template {template_id} not found")
        self.template_id = template_id


class UnknownFeatureError(TenantConfigError):
    def __init__(self, key: str) -> None:
        super().__init__(f"unknown feature {key}")
        self.key = key


class MigrationError(TenantConfigError):
    def __init__(self, message: str, *, from_version: int | None = None) -> None:
        super().__init__(message)
        self.from_version = from_version

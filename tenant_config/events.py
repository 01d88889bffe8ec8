from __future__ import annotations

from typing import Any

from tenant_config.context import get_correlation_id, get_tenant_id
from tenant_config.core.events import InProcessEventBus, event_bus

published_events: list[dict[str, Any]] = []


def publish(envelope: dict[str, Any], bus: InProcessEventBus | None = None) -> None:
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    existing_meta = envelope.get("meta")
    meta: dict[str, Any] = existing_meta.copy() if isinstance(existing_meta, dict) else {}
    tenant_id = get_tenant_id()
    if tenant_id is not None and "tenant_id" not in meta:
        meta["tenant_id"] = tenant_id
    if meta:
        envelope["meta"] = meta

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        (bus or event_bus).publish(event_type, envelope)

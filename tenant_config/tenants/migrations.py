from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from pydantic.alias_generators import to_camel

from tenant_config.metrics import observe_cache_migration, observe_cache_migration_reset
from tenant_config.tenants.defaults import default_status_rows
from tenant_config.tenants.errors import MigrationError
from tenant_config.tenants.features import FeatureFlagResolver
from tenant_config.tenants.schemas import ClientConfiguration, PersistedCacheEnvelope, Workflow


logger = logging.getLogger("tenant_config.cache.migrations")
tracer = trace.get_tracer("tenant_config.cache.migrations")

CURRENT_SCHEMA_VERSION = 3


@dataclass(frozen=True)
class MigrationContext:
    legacy_active_tenant_id: str | None = None


MigrationFn = Callable[[dict[str, Any], MigrationContext], dict[str, Any]]


@dataclass(frozen=True)
class Migration:
    from_version: int
    to_version: int
    description: str
    apply: MigrationFn


def _is_missing(record: dict[str, Any], key: str) -> bool:
    return record.get(key) is None and record.get(to_camel(key)) is None


def _backfill(record: dict[str, Any], defaults: dict[str, Callable[[], Any]]) -> dict[str, Any]:
    filled = dict(record)
    for key, factory in defaults.items():
        if _is_missing(filled, key):
            filled.pop(to_camel(key), None)
            filled[key] = factory()
    return filled


def _record_id(record: Any) -> str | None:
    if isinstance(record, dict) and record.get("id") is not None:
        return str(record["id"])
    return None


def _v1_to_v2(state: dict[str, Any], context: MigrationContext) -> dict[str, Any]:
    clients = [
        _backfill(
            client,
            {
                "customer_statuses": lambda: default_status_rows("customer"),
                "payment_statuses": lambda: default_status_rows("payment"),
                "workflows": lambda: Workflow().model_dump(mode="json"),
            },
        )
        for client in state.get("clients") or []
        if isinstance(client, dict)
    ]

    current = state.get("current_client")
    if current is None and clients:
        # The pointer used to live under its own key, outside the envelope.
        current = next(
            (client for client in clients if _record_id(client) == context.legacy_active_tenant_id),
            clients[0],
        )
    return {**state, "clients": clients, "current_client": current}


def _v2_to_v3(state: dict[str, Any], context: MigrationContext) -> dict[str, Any]:
    source = state.get("tenants") if "tenants" in state else state.get("clients")
    tenants = [
        _backfill(
            tenant,
            {
                "lead_statuses": lambda: default_status_rows("lead"),
                "task_statuses": lambda: default_status_rows("task"),
                "customer_statuses": lambda: default_status_rows("customer"),
                "payment_statuses": lambda: default_status_rows("payment"),
            },
        )
        for tenant in source or []
        if isinstance(tenant, dict)
    ]
    resolver = FeatureFlagResolver()
    for tenant in tenants:
        tenant["features"] = resolver.dump(resolver.resolve(tenant.get("features")))
    member_ids = {_record_id(tenant) for tenant in tenants}

    if "active_tenant_id" in state:
        active_tenant_id = state["active_tenant_id"]
    else:
        active_tenant_id = _record_id(state.get("current_client"))
    if active_tenant_id is not None and str(active_tenant_id) not in member_ids:
        active_tenant_id = None

    migrated = {key: value for key, value in state.items() if key not in {"clients", "current_client"}}
    migrated["tenants"] = tenants
    migrated["active_tenant_id"] = str(active_tenant_id) if active_tenant_id is not None else None
    return migrated


DEFAULT_MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, 2, "derive current client pointer, backfill customer/payment statuses and workflows", _v1_to_v2),
    Migration(2, 3, "rename clients to tenants, store active tenant id, backfill lead/task statuses, normalize features", _v2_to_v3),
)


def empty_envelope() -> PersistedCacheEnvelope:
    return PersistedCacheEnvelope(version=CURRENT_SCHEMA_VERSION, state={"tenants": [], "active_tenant_id": None})


class SchemaMigrator:
    def __init__(
        self,
        migrations: Sequence[Migration] = DEFAULT_MIGRATIONS,
        current_version: int = CURRENT_SCHEMA_VERSION,
    ) -> None:
        self.migrations = sorted(migrations, key=lambda item: item.from_version)
        self.current_version = current_version

    def migrate(
        self,
        envelope: PersistedCacheEnvelope,
        *,
        legacy_active_tenant_id: str | None = None,
    ) -> PersistedCacheEnvelope:
        version = envelope.version or 1
        if version > self.current_version:
            raise MigrationError(f"schema version {version} is newer than {self.current_version}", from_version=version)

        context = MigrationContext(legacy_active_tenant_id=legacy_active_tenant_id)
        state = copy.deepcopy(envelope.state)
        with tracer.start_as_current_span("tenant_config.cache.migrate") as span:
            span.set_attribute("from_version", version)
            for migration in self.migrations:
                if migration.from_version != version:
                    continue
                state = migration.apply(state, context)
                logger.info(
                    "cache_migration_applied",
                    extra={"from_version": migration.from_version, "to_version": migration.to_version},
                )
                observe_cache_migration(migration.from_version, migration.to_version)
                version = migration.to_version
            span.set_attribute("to_version", version)

        if version != self.current_version:
            raise MigrationError(f"no migration path from version {version}", from_version=version)
        return PersistedCacheEnvelope(version=version, state=state)

    def migrate_or_reset(
        self,
        envelope: PersistedCacheEnvelope | None,
        *,
        legacy_active_tenant_id: str | None = None,
    ) -> PersistedCacheEnvelope:
        if envelope is None:
            return empty_envelope()
        try:
            migrated = self.migrate(envelope, legacy_active_tenant_id=legacy_active_tenant_id)
            for tenant in migrated.state.get("tenants") or []:
                ClientConfiguration.model_validate(tenant)
        except Exception as exc:
            logger.error(
                "cache_migration_failed",
                extra={"schema_version": envelope.version, "error": str(exc)},
                exc_info=True,
            )
            observe_cache_migration_reset()
            return empty_envelope()
        return migrated

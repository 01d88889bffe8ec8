from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from tenant_config import audit, events
from tenant_config.context import reset_tenant_id, set_tenant_id
from tenant_config.core.events import InProcessEventBus, event_bus
from tenant_config.metrics import observe_soft_faults
from tenant_config.notifications import Notifier, notify
from tenant_config.tenants.cache import ConfigCache
from tenant_config.tenants.defaults import default_statuses
from tenant_config.tenants.errors import TenantNotFoundError, TransportError
from tenant_config.tenants.features import FeatureFlagResolver
from tenant_config.tenants.migrations import CURRENT_SCHEMA_VERSION, SchemaMigrator
from tenant_config.tenants.schemas import (
    STATUS_FIELDS,
    ClientConfiguration,
    ConfigurationUpdate,
    CustomField,
    MessageTemplate,
    PersistedCacheEnvelope,
    ResolvedConfiguration,
    Status,
    StatusKind,
    TenantDraft,
    TenantUpdate,
)
from tenant_config.tenants.statuses import StatusCatalog
from tenant_config.tenants.templates import Clock, TemplateRegistry
from tenant_config.tenants.transport import SessionTokenProvider, SessionTokens, TenantTransport
from tenant_config.tenants.workflow import WorkflowReport, WorkflowValidator


logger = logging.getLogger("tenant_config.repository")

T = TypeVar("T")


class RepositoryState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class ConfigSnapshot:
    state: RepositoryState
    tenants: tuple[ClientConfiguration, ...]
    active_tenant_id: str | None
    resolved: ResolvedConfiguration | None
    error: str | None


SnapshotHandler = Callable[[ConfigSnapshot], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _default_id_factory() -> str:
    return str(uuid.uuid4())


class ConfigRepository:
    entity_type = "tenant_config.tenant"

    def __init__(
        self,
        transport: TenantTransport,
        cache: ConfigCache,
        session: SessionTokenProvider,
        *,
        id_factory: Callable[[], str] | None = None,
        notifier: Notifier | None = None,
        bus: InProcessEventBus | None = None,
        clock: Clock | None = None,
        migrator: SchemaMigrator | None = None,
        resolver: FeatureFlagResolver | None = None,
        validator: WorkflowValidator | None = None,
        actor: str = "system",
    ) -> None:
        self.transport = transport
        self.cache = cache
        self.session = session
        self.id_factory = id_factory or _default_id_factory
        self.notifier = notifier or notify
        self.bus = bus or event_bus
        self.clock = clock or utcnow
        self.migrator = migrator or SchemaMigrator()
        self.resolver = resolver or FeatureFlagResolver()
        self.validator = validator or WorkflowValidator()
        self.templates = TemplateRegistry(id_factory=self.id_factory, clock=self.clock)
        self.actor = actor

        self._tenants: list[ClientConfiguration] = []
        self._active_tenant_id: str | None = None
        self._state = RepositoryState.UNINITIALIZED
        self._error: str | None = None
        self._subscribers: list[SnapshotHandler] = []

    # Lifecycle

    async def initialize(self) -> None:
        stored = self.cache.load_envelope()
        pointer = self.cache.load_active_pointer()
        envelope = self.migrator.migrate_or_reset(stored, legacy_active_tenant_id=pointer)
        if stored is None or stored.version != envelope.version:
            self.cache.save_envelope(envelope)

        self._tenants = [ClientConfiguration.model_validate(tenant) for tenant in envelope.state.get("tenants") or []]
        member_ids = {tenant.id for tenant in self._tenants}
        active_tenant_id = envelope.state.get("active_tenant_id")
        if active_tenant_id not in member_ids:
            active_tenant_id = pointer if pointer in member_ids else None
        self._active_tenant_id = active_tenant_id
        logger.info(
            "tenant_config_hydrated",
            extra={"schema_version": envelope.version, "tenant_count": len(self._tenants)},
        )
        await self.refresh()

    async def refresh(self) -> None:
        tokens = self._tokens("refresh")
        if tokens is None:
            return
        await self._load(tokens)

    def clear(self) -> None:
        previous = self._active_tenant_id
        self._tenants = []
        self._active_tenant_id = None
        self._state = RepositoryState.UNINITIALIZED
        self._error = None
        self.cache.clear()
        logger.info("tenant_config_cleared")
        if previous is not None:
            self._publish_active_changed(previous, None)
        self._emit()

    # Reads

    @property
    def tenants(self) -> list[ClientConfiguration]:
        return list(self._tenants)

    @property
    def active_tenant(self) -> ClientConfiguration | None:
        if self._active_tenant_id is None:
            return None
        return self.get_tenant(self._active_tenant_id)

    @property
    def active_tenant_id(self) -> str | None:
        return self._active_tenant_id

    @property
    def state(self) -> RepositoryState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    def get_tenant(self, tenant_id: str) -> ClientConfiguration | None:
        for tenant in self._tenants:
            if tenant.id == str(tenant_id):
                return tenant
        return None

    def get_tenant_by_name(self, name: str) -> ClientConfiguration | None:
        for tenant in self._tenants:
            if tenant.name == name:
                return tenant
        return None

    def get_statuses(self, tenant_id: str, kind: StatusKind) -> list[Status]:
        tenant = self.get_tenant(tenant_id)
        statuses = tenant.statuses(kind) if tenant is not None else default_statuses(kind)
        return StatusCatalog(kind).list(statuses)

    def get_custom_fields(self, tenant_id: str) -> list[CustomField]:
        tenant = self.get_tenant(tenant_id)
        return list(tenant.custom_fields) if tenant is not None else []

    def resolved_configuration(self) -> ResolvedConfiguration | None:
        tenant = self.active_tenant
        if tenant is None:
            return None
        return ResolvedConfiguration(
            tenant_id=tenant.id,
            lead_statuses=tenant.lead_statuses,
            customer_statuses=tenant.customer_statuses,
            payment_statuses=tenant.payment_statuses,
            features=tenant.features,
            message_templates=tenant.message_templates,
        )

    def can_transition(self, tenant_id: str, from_id: str, to_id: str) -> bool:
        statuses = self.get_statuses(tenant_id, "lead")
        by_id = {status.id: status for status in statuses}
        source = by_id.get(str(from_id))
        if source is None or str(to_id) not in by_id:
            return False
        return self.validator.can_transition(source, str(to_id))

    def validate_workflow(self, tenant_id: str) -> WorkflowReport:
        tenant = self._require_tenant(tenant_id)
        return self.validator.validate(tenant.lead_statuses, tenant.workflows)

    def is_feature_enabled(self, tenant_id: str, key: str) -> bool:
        tenant = self.get_tenant(tenant_id)
        return self.resolver.is_enabled(tenant.features if tenant is not None else {}, key)

    def subscribe(self, handler: SnapshotHandler) -> Callable[[], None]:
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    def snapshot(self) -> ConfigSnapshot:
        return ConfigSnapshot(
            state=self._state,
            tenants=tuple(self._tenants),
            active_tenant_id=self._active_tenant_id,
            resolved=self.resolved_configuration(),
            error=self._error,
        )

    # Active tenant

    def set_active_tenant(self, tenant_id: str | None) -> bool:
        if tenant_id is not None and self.get_tenant(tenant_id) is None:
            logger.warning("ignoring unknown active tenant", extra={"tenant_id": str(tenant_id)})
            return False

        previous = self._active_tenant_id
        self._active_tenant_id = str(tenant_id) if tenant_id is not None else None
        self.cache.save_active_pointer(self._active_tenant_id)
        self._persist()
        if previous != self._active_tenant_id:
            self._publish_active_changed(previous, self._active_tenant_id)
        self._emit()
        return True

    # Tenant mutations

    async def create_tenant(self, draft: TenantDraft | Mapping[str, Any]) -> ClientConfiguration | None:
        payload = draft if isinstance(draft, TenantDraft) else TenantDraft.model_validate(draft)

        async def call(tokens: SessionTokens) -> str | None:
            return await self.transport.create_tenant(payload, tokens)

        created_id = await self._mutate(
            "create_tenant",
            call,
            tenant_id=None,
            action="create",
            before=None,
            after=payload.model_dump(mode="json", exclude_none=True),
            success_message="Client created successfully",
        )
        if created_id is None:
            return None
        return self.get_tenant(created_id)

    async def update_tenant(self, tenant_id: str, update: TenantUpdate | Mapping[str, Any]) -> bool:
        tenant = self._require_tenant(tenant_id)
        payload = update if isinstance(update, TenantUpdate) else TenantUpdate.model_validate(update)

        async def call(tokens: SessionTokens) -> bool:
            await self.transport.update_tenant(tenant.id, payload, tokens, current=tenant)
            return True

        acknowledged = await self._mutate(
            "update_tenant",
            call,
            tenant_id=tenant.id,
            action="update",
            before=tenant.model_dump(mode="json"),
            after=payload.model_dump(mode="json", exclude_none=True),
            success_message="Client updated successfully",
        )
        return acknowledged is True

    async def delete_tenant(self, tenant_id: str) -> None:
        tenant = self._require_tenant(tenant_id)

        async def call(tokens: SessionTokens) -> None:
            await self.transport.delete_tenant(tenant.id, tokens)
            if self._active_tenant_id == tenant.id:
                self._active_tenant_id = None
                self.cache.save_active_pointer(None)
                self._publish_active_changed(tenant.id, None)

        await self._mutate(
            "delete_tenant",
            call,
            tenant_id=tenant.id,
            action="delete",
            before=tenant.model_dump(mode="json"),
            after=None,
            success_message="Client deleted successfully",
        )

    async def activate_tenant(self, tenant_id: str) -> None:
        await self._set_active_flag(tenant_id, True)

    async def deactivate_tenant(self, tenant_id: str) -> None:
        await self._set_active_flag(tenant_id, False)

    async def update_configuration(
        self,
        tenant_id: str,
        update: ConfigurationUpdate | Mapping[str, Any],
    ) -> bool:
        tenant = self._require_tenant(tenant_id)
        payload = update if isinstance(update, ConfigurationUpdate) else ConfigurationUpdate.model_validate(update)

        async def call(tokens: SessionTokens) -> bool:
            await self.transport.update_configuration(tenant.id, payload, tokens, current=tenant)
            return True

        acknowledged = await self._mutate(
            "update_configuration",
            call,
            tenant_id=tenant.id,
            action="update_configuration",
            before={key: value for key, value in tenant.model_dump(mode="json").items() if key in payload.model_fields_set},
            after=payload.model_dump(mode="json", exclude_none=True),
            success_message="Client configuration updated successfully",
        )
        return acknowledged is True

    # Status intents

    async def add_status(self, tenant_id: str, kind: StatusKind, draft: Status | Mapping[str, Any]) -> str | None:
        tenant = self._require_tenant(tenant_id)
        statuses, new_id = self._catalog(kind).add(tenant.statuses(kind), draft if isinstance(draft, Status) else dict(draft))
        if not await self._save_statuses(tenant.id, kind, statuses):
            return None
        return new_id

    async def update_status(self, tenant_id: str, kind: StatusKind, status_id: str, patch: Mapping[str, Any]) -> None:
        tenant = self._require_tenant(tenant_id)
        statuses = self._catalog(kind).update(tenant.statuses(kind), str(status_id), dict(patch))
        await self._save_statuses(tenant.id, kind, statuses)

    async def remove_status(self, tenant_id: str, kind: StatusKind, status_id: str) -> None:
        tenant = self._require_tenant(tenant_id)
        statuses = self._catalog(kind).remove(tenant.statuses(kind), str(status_id))
        await self._save_statuses(tenant.id, kind, statuses)

    async def reorder_statuses(self, tenant_id: str, kind: StatusKind, ordered_ids: Sequence[str]) -> None:
        tenant = self._require_tenant(tenant_id)
        statuses = self._catalog(kind).reorder(tenant.statuses(kind), [str(item) for item in ordered_ids])
        await self._save_statuses(tenant.id, kind, statuses)

    # Feature and template intents

    async def set_feature(self, tenant_id: str, key: str, enabled: bool) -> None:
        tenant = self._require_tenant(tenant_id)
        features = self.resolver.toggle(tenant.features, key, enabled)
        await self.update_configuration(tenant.id, ConfigurationUpdate(features=self.resolver.dump(features)))

    async def import_default_templates(self, tenant_id: str) -> list[MessageTemplate] | None:
        tenant = self._require_tenant(tenant_id)
        imported = self.templates.import_defaults(tenant.id)
        if not await self._save_templates(tenant.id, [*tenant.message_templates, *imported]):
            return None
        return imported

    async def add_template(self, tenant_id: str, draft: Mapping[str, Any]) -> MessageTemplate | None:
        tenant = self._require_tenant(tenant_id)
        created = self.templates.create(tenant.id, draft)
        if not await self._save_templates(tenant.id, [*tenant.message_templates, created]):
            return None
        return created

    async def update_template(self, tenant_id: str, template_id: str, patch: Mapping[str, Any]) -> None:
        tenant = self._require_tenant(tenant_id)
        templates = self.templates.update(tenant.message_templates, str(template_id), patch)
        await self._save_templates(tenant.id, templates)

    async def remove_template(self, tenant_id: str, template_id: str) -> None:
        tenant = self._require_tenant(tenant_id)
        templates = self.templates.remove(tenant.message_templates, str(template_id))
        await self._save_templates(tenant.id, templates)

    # Internals

    def _catalog(self, kind: StatusKind) -> StatusCatalog:
        return StatusCatalog(kind, id_factory=self.id_factory)

    def _require_tenant(self, tenant_id: str) -> ClientConfiguration:
        tenant = self.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(str(tenant_id))
        return tenant

    def _tokens(self, operation: str) -> SessionTokens | None:
        tokens = self.session.get_tokens()
        if tokens is None or not tokens.session_token or not tokens.access_token:
            logger.debug("skipping remote call without session", extra={"operation": operation})
            return None
        return tokens

    async def _save_statuses(self, tenant_id: str, kind: StatusKind, statuses: list[Status]) -> bool:
        # The configuration sub-resource only accepts lead, customer and payment statuses.
        if kind == "task":
            return await self.update_tenant(tenant_id, TenantUpdate(task_statuses=statuses))
        return await self.update_configuration(tenant_id, ConfigurationUpdate.model_validate({STATUS_FIELDS[kind]: statuses}))

    async def _save_templates(self, tenant_id: str, templates: list[MessageTemplate]) -> bool:
        return await self.update_configuration(tenant_id, ConfigurationUpdate(message_templates=templates))

    async def _set_active_flag(self, tenant_id: str, is_active: bool) -> None:
        tenant = self._require_tenant(tenant_id)
        operation = "activate_tenant" if is_active else "deactivate_tenant"

        async def call(tokens: SessionTokens) -> None:
            if is_active:
                await self.transport.activate_tenant(tenant.id, tokens)
            else:
                await self.transport.deactivate_tenant(tenant.id, tokens)

        await self._mutate(
            operation,
            call,
            tenant_id=tenant.id,
            action="activate" if is_active else "deactivate",
            before={"is_active": tenant.is_active},
            after={"is_active": is_active},
            success_message="Client activated successfully" if is_active else "Client deactivated successfully",
        )

    async def _mutate(
        self,
        operation: str,
        call: Callable[[SessionTokens], Awaitable[T]],
        *,
        tenant_id: str | None,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        success_message: str,
    ) -> T | None:
        tokens = self._tokens(operation)
        if tokens is None:
            return None

        context_token = set_tenant_id(tenant_id)
        try:
            self._set_state(RepositoryState.LOADING)
            try:
                result = await call(tokens)
            except TransportError as exc:
                self._fail(operation, exc)
                raise

            audit.record(
                actor=self.actor,
                entity_type=self.entity_type,
                entity_id=tenant_id or str(result or ""),
                action=action,
                before=before,
                after=after,
            )
            logger.info("tenant_mutation_acknowledged", extra={"operation": operation})
            self.notifier("success", success_message)
            await self._load(tokens)
            return result
        finally:
            reset_tenant_id(context_token)

    async def _load(self, tokens: SessionTokens) -> None:
        self._set_state(RepositoryState.LOADING)
        try:
            tenants = await self.transport.list_tenants(tokens)
        except TransportError as exc:
            self._fail("list_tenants", exc)
            return
        self._apply(tenants)

    def _apply(self, tenants: list[ClientConfiguration]) -> None:
        previous = self._active_tenant_id
        member_ids = {tenant.id for tenant in tenants}
        self._tenants = tenants

        if previous not in member_ids:
            pointer = self.cache.load_active_pointer()
            self._active_tenant_id = pointer if pointer in member_ids else None

        self._detect_soft_faults(tenants)
        self._persist()
        self._error = None
        self._state = RepositoryState.READY
        logger.info(
            "tenant_config_resolved",
            extra={"tenant_count": len(tenants), "state": self._state.value},
        )

        resolved = self.resolved_configuration()
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "tenant_config.resolved",
                "occurred_at": self.clock().isoformat(),
                "payload": {
                    "tenant_ids": [tenant.id for tenant in tenants],
                    "active_tenant_id": self._active_tenant_id,
                    "resolved": resolved.model_dump(mode="json") if resolved is not None else None,
                },
            },
            bus=self.bus,
        )
        if previous != self._active_tenant_id:
            self._publish_active_changed(previous, self._active_tenant_id)
        self._emit()

    def _detect_soft_faults(self, tenants: list[ClientConfiguration]) -> None:
        for tenant in tenants:
            dangling = self.validator.find_dangling_references(tenant.lead_statuses)
            if dangling:
                logger.warning(
                    "lead statuses reference %d unknown transition targets",
                    len(dangling),
                    extra={"tenant_id": tenant.id},
                )
                observe_soft_faults("dangling_transition", len(dangling))
            for kind in STATUS_FIELDS:
                if self._catalog(kind).has_multiple_defaults(tenant.statuses(kind)):
                    observe_soft_faults(f"multiple_{kind}_defaults")

    def _persist(self) -> None:
        self.cache.save_envelope(
            PersistedCacheEnvelope(
                version=CURRENT_SCHEMA_VERSION,
                state={
                    "tenants": [tenant.model_dump(mode="json") for tenant in self._tenants],
                    "active_tenant_id": self._active_tenant_id,
                },
            )
        )

    def _fail(self, operation: str, exc: TransportError) -> None:
        self._error = exc.message
        self._state = RepositoryState.ERROR
        logger.error(
            "tenant_config_remote_failed",
            extra={"operation": operation, "status_code": exc.status_code, "error": exc.message},
        )
        self.notifier("error", exc.message)
        self._emit()

    def _set_state(self, state: RepositoryState) -> None:
        if self._state != state:
            self._state = state
            self._emit()

    def _publish_active_changed(self, previous: str | None, current: str | None) -> None:
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "tenant_config.active_tenant_changed",
                "occurred_at": self.clock().isoformat(),
                "payload": {"previous_tenant_id": previous, "active_tenant_id": current},
            },
            bus=self.bus,
        )

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for handler in list(self._subscribers):
            handler(snapshot)

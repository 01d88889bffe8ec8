from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from tenant_config.metrics import observe_soft_faults
from tenant_config.tenants.defaults import DEFAULT_PRIMARY_COLOR, DEFAULT_SECONDARY_COLOR, create_default_configuration
from tenant_config.tenants.features import FeatureFlagResolver
from tenant_config.tenants.schemas import (
    STATUS_FIELDS,
    STATUS_KINDS,
    STATUS_MODELS,
    Branding,
    ClientConfiguration,
    ConfigurationUpdate,
    MessageTemplate,
    Status,
    StatusKind,
    TenantDraft,
    TenantUpdate,
    Workflow,
)


logger = logging.getLogger("tenant_config.codec")


def _parse_statuses(kind: StatusKind, rows: Any, tenant_id: str) -> list[Status]:
    model = STATUS_MODELS[kind]
    parsed: list[Status] = []
    skipped = 0
    for row in rows if isinstance(rows, list) else []:
        if isinstance(row, Status):
            parsed.append(model.model_validate(row.model_dump()))
            continue
        try:
            parsed.append(model.model_validate(row))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning(
            "skipped %d malformed %s statuses",
            skipped,
            kind,
            extra={"tenant_id": tenant_id, "operation": "decode"},
        )
        observe_soft_faults(f"malformed_{kind}_status", skipped)
    return parsed


def _parse_templates(rows: Any, tenant_id: str) -> list[MessageTemplate]:
    parsed: list[MessageTemplate] = []
    for row in rows if isinstance(rows, list) else []:
        try:
            template = row if isinstance(row, MessageTemplate) else MessageTemplate.model_validate(row)
        except ValidationError:
            logger.warning("skipped malformed message template", extra={"tenant_id": tenant_id, "operation": "decode"})
            observe_soft_faults("malformed_template")
            continue
        if template.tenant_id is None:
            template = template.model_copy(update={"tenant_id": tenant_id})
        parsed.append(template)
    return parsed


def _split_templates(workflows: Any) -> tuple[Any, Any]:
    if isinstance(workflows, Workflow):
        return workflows.model_copy(update={"message_templates": []}), list(workflows.message_templates)
    if isinstance(workflows, dict):
        remaining = dict(workflows)
        templates = remaining.pop("message_templates", None)
        camel_templates = remaining.pop("messageTemplates", None)
        return remaining, templates if templates is not None else camel_templates
    return None, None


def resolve_tenant(
    tenant_id: str,
    name: str,
    fields: dict[str, Any],
    resolver: FeatureFlagResolver,
) -> ClientConfiguration:
    # None falls back to the default; an empty status list is kept as authored.
    defaults = create_default_configuration(tenant_id, name)
    values: dict[str, Any] = {
        "id": tenant_id,
        "name": name,
        "branding": defaults.branding,
        "lead_sources": defaults.lead_sources,
        "custom_fields": defaults.custom_fields,
        "settings": defaults.settings,
        "workflows": defaults.workflows,
    }
    for key, value in fields.items():
        if value is not None and key not in STATUS_FIELDS.values():
            values[key] = value

    for kind in STATUS_KINDS:
        field_name = STATUS_FIELDS[kind]
        raw = fields.get(field_name)
        values[field_name] = defaults.statuses(kind) if raw is None else _parse_statuses(kind, raw, tenant_id)

    values["features"] = resolver.resolve(fields.get("features"))
    workflows, raw_templates = _split_templates(values["workflows"])
    values["workflows"] = workflows if workflows is not None else defaults.workflows
    configuration = ClientConfiguration.model_validate(values)
    templates = _parse_templates(raw_templates, tenant_id)
    return configuration.model_copy(
        update={"workflows": configuration.workflows.model_copy(update={"message_templates": templates})}
    )


def decode_system_client(raw: dict[str, Any], resolver: FeatureFlagResolver) -> ClientConfiguration:
    tenant_id = str(raw["id"])
    name = raw.get("name") or ""
    workflow_settings = raw.get("workflow_settings") if isinstance(raw.get("workflow_settings"), dict) else {}
    workflows: dict[str, Any] = dict(workflow_settings)
    workflows["message_templates"] = raw.get("message_templates") or []

    fields: dict[str, Any] = {
        "branding": {
            "company_name": raw.get("company_name") or name,
            "primary_color": raw.get("primary_color") or DEFAULT_PRIMARY_COLOR,
            "secondary_color": raw.get("secondary_color") or DEFAULT_SECONDARY_COLOR,
            "logo_url": raw.get("logo_url") or None,
        },
        "lead_statuses": raw.get("lead_statuses"),
        "task_statuses": raw.get("task_statuses"),
        "customer_statuses": raw.get("customer_statuses"),
        "payment_statuses": raw.get("payment_statuses"),
        "features": raw.get("features"),
        "workflows": workflows,
        "is_active": raw.get("is_active"),
        "created_at": raw.get("created_at"),
        "updated_at": raw.get("updated_at"),
    }
    return resolve_tenant(tenant_id, name, fields, resolver)


def decode_client_configuration(raw: dict[str, Any], resolver: FeatureFlagResolver) -> ClientConfiguration:
    tenant_id = str(raw["id"])
    name = raw.get("name") or ""
    configuration = raw.get("configuration") if isinstance(raw.get("configuration"), dict) else {}
    fields: dict[str, Any] = {to_snake(key): value for key, value in configuration.items()}
    for key in ("id", "name", "primary_color", "secondary_color", "logo"):
        fields.pop(key, None)

    branding = Branding.model_validate(configuration.get("branding") or {})
    branding_values = branding.model_dump(exclude_unset=True)
    if "primaryColor" in configuration:
        branding_values.setdefault("primary_color", configuration["primaryColor"])
    if "secondaryColor" in configuration:
        branding_values.setdefault("secondary_color", configuration["secondaryColor"])
    if configuration.get("logo"):
        branding_values.setdefault("logo_url", configuration["logo"])
    branding_values.setdefault("company_name", name)
    fields["branding"] = {**Branding().model_dump(), **branding_values}

    for key in ("is_active", "created_at", "updated_at"):
        if raw.get(key) is not None:
            fields[key] = raw[key]
    return resolve_tenant(tenant_id, name, fields, resolver)


def template_to_system_wire(template: MessageTemplate) -> dict[str, Any]:
    return {
        "id": template.id,
        "client_id": template.tenant_id,
        "template_name": template.name,
        "template_type": template.type,
        "subject": template.subject,
        "content": template.content,
        "variables": list(template.variables),
        "is_active": template.is_active,
        "created_at": template.created_at.isoformat() if template.created_at else None,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
    }


def _statuses_to_wire(statuses: Sequence[Status]) -> list[dict[str, Any]]:
    return [status.model_dump(mode="json", by_alias=True, exclude_none=True) for status in statuses]


def encode_system_client_draft(draft: TenantDraft, resolver: FeatureFlagResolver) -> dict[str, Any]:
    body: dict[str, Any] = {
        "name": draft.name,
        "company_name": draft.company_name,
        "primary_color": draft.primary_color or DEFAULT_PRIMARY_COLOR,
        "secondary_color": draft.secondary_color or DEFAULT_SECONDARY_COLOR,
        "logo_url": draft.logo_url,
        "features": resolver.dump(resolver.resolve(draft.features)),
    }
    # Omitted collections fall back to the canonical defaults on read.
    for kind in ("lead", "customer", "payment"):
        statuses = getattr(draft, STATUS_FIELDS[kind])
        if statuses is not None:
            body[STATUS_FIELDS[kind]] = _statuses_to_wire(statuses)
    if draft.message_templates is not None:
        body["message_templates"] = [template_to_system_wire(item) for item in draft.message_templates]
    return body


def encode_system_client_update(update: TenantUpdate | ConfigurationUpdate, resolver: FeatureFlagResolver) -> dict[str, Any]:
    body: dict[str, Any] = {}
    for key, value in update:
        if value is None:
            continue
        if key in STATUS_FIELDS.values():
            body[key] = _statuses_to_wire(value)
        elif key == "features":
            body[key] = resolver.dump(resolver.resolve(value))
        elif key == "message_templates":
            body[key] = [template_to_system_wire(item) for item in value]
        else:
            body[key] = value
    return body


def encode_client_configuration_draft(draft: TenantDraft, resolver: FeatureFlagResolver) -> dict[str, Any]:
    configuration = create_default_configuration("", draft.name)
    updates: dict[str, Any] = {
        "branding": configuration.branding.model_copy(
            update={
                "company_name": draft.company_name,
                "primary_color": draft.primary_color or DEFAULT_PRIMARY_COLOR,
                "secondary_color": draft.secondary_color or DEFAULT_SECONDARY_COLOR,
                "logo_url": draft.logo_url,
            }
        ),
        "features": resolver.resolve(draft.features),
    }
    for kind in ("lead", "customer", "payment"):
        statuses = getattr(draft, STATUS_FIELDS[kind])
        if statuses is not None:
            updates[STATUS_FIELDS[kind]] = statuses
    if draft.message_templates is not None:
        updates["workflows"] = configuration.workflows.model_copy(update={"message_templates": draft.message_templates})

    body = configuration.model_copy(update=updates).model_dump(
        mode="json",
        by_alias=True,
        exclude={"id", "created_at", "updated_at"},
    )
    return {"name": draft.name, "configuration": body}


def encode_client_configuration_update(
    update: TenantUpdate | ConfigurationUpdate,
    current: ClientConfiguration | None,
    resolver: FeatureFlagResolver,
) -> dict[str, Any]:
    body: dict[str, Any] = {}
    configuration: dict[str, Any] = {}
    branding = current.branding if current is not None else Branding()
    branding_updates: dict[str, Any] = {}

    for key, value in update:
        if value is None:
            continue
        if key == "name":
            body["name"] = value
        elif key in {"company_name", "primary_color", "secondary_color", "logo_url"}:
            branding_updates[key] = value
        elif key in STATUS_FIELDS.values():
            configuration[key] = _statuses_to_wire(value)
        elif key == "features":
            configuration["features"] = resolver.dump(resolver.resolve(value))
        elif key == "message_templates":
            workflows = current.workflows if current is not None else None
            base = workflows.model_dump(mode="json", by_alias=True) if workflows is not None else {}
            base["messageTemplates"] = [item.model_dump(mode="json", by_alias=True) for item in value]
            configuration["workflows"] = base

    if branding_updates:
        configuration["branding"] = branding.model_copy(update=branding_updates).model_dump(mode="json", by_alias=True)

    camel = {_camel_key(key): value for key, value in configuration.items()}
    if camel:
        body["configuration"] = camel
    return body


def _camel_key(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)

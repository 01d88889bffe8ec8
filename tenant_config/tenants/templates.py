from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from tenant_config.tenants.defaults import DEFAULT_TEMPLATE_SEED
from tenant_config.tenants.errors import TemplateNotFoundError
from tenant_config.tenants.schemas import MessageTemplate


PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _default_id_factory() -> str:
    return str(uuid.uuid4())


class TemplateRegistry:
    def __init__(self, id_factory: Callable[[], str] | None = None, clock: Clock | None = None) -> None:
        self.id_factory = id_factory or _default_id_factory
        self.clock = clock or utcnow

    def import_defaults(self, tenant_id: str) -> list[MessageTemplate]:
        # Fresh ids on every call: importing twice yields two independent copies.
        now = self.clock()
        return [
            MessageTemplate.model_validate(
                {
                    **seed,
                    "id": self.id_factory(),
                    "tenant_id": tenant_id,
                    "is_active": True,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            for seed in DEFAULT_TEMPLATE_SEED
        ]

    def create(self, tenant_id: str, draft: Mapping[str, Any]) -> MessageTemplate:
        now = self.clock()
        values = dict(draft)
        values.update({"id": self.id_factory(), "tenant_id": tenant_id, "created_at": now, "updated_at": now})
        values.setdefault("variables", sorted(self.placeholders_in(str(values.get("content", "")))))
        return MessageTemplate.model_validate(values)

    def update(
        self,
        templates: Sequence[MessageTemplate],
        template_id: str,
        patch: Mapping[str, Any],
    ) -> list[MessageTemplate]:
        if not any(template.id == template_id for template in templates):
            raise TemplateNotFoundError(template_id)

        changes = {key: value for key, value in patch.items() if key not in {"id", "tenant_id", "created_at"}}
        changes["updated_at"] = self.clock()
        return [
            MessageTemplate.model_validate({**template.model_dump(), **changes}) if template.id == template_id else template
            for template in templates
        ]

    def remove(self, templates: Sequence[MessageTemplate], template_id: str) -> list[MessageTemplate]:
        return [template for template in templates if template.id != template_id]

    def render(self, template: MessageTemplate, values: Mapping[str, str]) -> str:
        return self._substitute(template.content, values)

    def render_subject(self, template: MessageTemplate, values: Mapping[str, str]) -> str | None:
        if template.subject is None:
            return None
        return self._substitute(template.subject, values)

    def placeholders_in(self, text: str) -> set[str]:
        return set(PLACEHOLDER_RE.findall(text))

    def placeholders(self, template: MessageTemplate) -> set[str]:
        found = self.placeholders_in(template.content)
        if template.subject:
            found |= self.placeholders_in(template.subject)
        return found

    def undeclared_variables(self, template: MessageTemplate) -> set[str]:
        return self.placeholders(template) - set(template.variables)

    def _substitute(self, text: str, values: Mapping[str, str]) -> str:
        rendered = text
        for key, value in values.items():
            rendered = rendered.replace("{" + key + "}", str(value))
        return rendered

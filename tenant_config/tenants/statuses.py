from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from tenant_config.tenants.errors import StatusNotFoundError
from tenant_config.tenants.schemas import STATUS_MODELS, Status, StatusKind


IdFactory = Callable[[], str]

_IMMUTABLE_FIELDS = {"id"}


def _default_id_factory() -> str:
    return str(uuid.uuid4())


class StatusCatalog:
    def __init__(self, kind: StatusKind, id_factory: IdFactory | None = None) -> None:
        self.kind = kind
        self.model = STATUS_MODELS[kind]
        self.id_factory = id_factory or _default_id_factory

    def list(self, statuses: Iterable[Status]) -> list[Status]:
        return sorted(statuses, key=lambda item: (item.order, item.id))

    def get(self, statuses: Iterable[Status], status_id: str) -> Status | None:
        for status in statuses:
            if status.id == status_id:
                return status
        return None

    def add(self, statuses: Sequence[Status], draft: Status | dict[str, Any]) -> tuple[list[Status], str]:
        existing_ids = {status.id for status in statuses}
        new_id = self.id_factory()
        while new_id in existing_ids:
            new_id = self.id_factory()

        values = draft.model_dump() if isinstance(draft, Status) else dict(draft)
        values["id"] = new_id
        values["order"] = max((status.order for status in statuses), default=0) + 1
        created = self.model.model_validate(values)
        return [*statuses, created], new_id

    def update(self, statuses: Sequence[Status], status_id: str, patch: dict[str, Any]) -> list[Status]:
        if self.get(statuses, status_id) is None:
            raise StatusNotFoundError(self.kind, status_id)

        changes = {key: value for key, value in patch.items() if key not in _IMMUTABLE_FIELDS}
        updated: list[Status] = []
        for status in statuses:
            if status.id == status_id:
                merged = {**status.model_dump(), **changes}
                updated.append(self.model.model_validate(merged))
            else:
                updated.append(status)
        return updated

    def remove(self, statuses: Sequence[Status], status_id: str) -> list[Status]:
        return [status for status in statuses if status.id != status_id]

    def reorder(self, statuses: Sequence[Status], ordered_ids: Sequence[str]) -> list[Status]:
        by_id = {status.id: status for status in statuses}
        sequence = [status_id for status_id in dict.fromkeys(ordered_ids) if status_id in by_id]
        remaining = [status.id for status in self.list(statuses) if status.id not in set(sequence)]
        return [
            by_id[status_id].model_copy(update={"order": position})
            for position, status_id in enumerate([*sequence, *remaining], start=1)
        ]

    def defaults(self, statuses: Iterable[Status]) -> list[Status]:
        return [status for status in self.list(statuses) if status.is_default]

    def has_multiple_defaults(self, statuses: Iterable[Status]) -> bool:
        return len(self.defaults(statuses)) > 1

    def final_statuses(self, statuses: Iterable[Status]) -> list[Status]:
        return [status for status in self.list(statuses) if status.is_final]

    def duplicate_ids(self, statuses: Iterable[Status]) -> list[str]:
        counts = Counter(status.id for status in statuses)
        return sorted(status_id for status_id, count in counts.items() if count > 1)

    def resolve_default(self, statuses: Iterable[Status], preferred_id: str | None = None) -> Status | None:
        ordered = self.list(statuses)
        if preferred_id is not None:
            preferred = self.get(ordered, preferred_id)
            if preferred is not None:
                return preferred
        for status in ordered:
            if status.is_default:
                return status
        return ordered[0] if ordered else None

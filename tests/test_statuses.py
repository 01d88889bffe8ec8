from __future__ import annotations

from collections.abc import Callable

import pytest

from tenant_config.tenants.defaults import default_statuses
from tenant_config.tenants.errors import StatusNotFoundError
from tenant_config.tenants.schemas import LeadStatus, PaymentStatus, Status
from tenant_config.tenants.statuses import StatusCatalog


def _sequence_ids(*values: str) -> Callable[[], str]:
    pending = list(values)

    def factory() -> str:
        return pending.pop(0)

    return factory


@pytest.fixture()
def lead_statuses() -> list[Status]:
    return default_statuses("lead")


def test_list_sorts_by_order_then_id() -> None:
    catalog = StatusCatalog("task")
    statuses = [
        Status(id="b", name="B", order=2),
        Status(id="c", name="C", order=1),
        Status(id="a", name="A", order=2),
    ]

    assert [status.id for status in catalog.list(statuses)] == ["c", "a", "b"]


def test_add_appends_with_next_order(lead_statuses: list[Status]) -> None:
    catalog = StatusCatalog("lead", id_factory=_sequence_ids("13"))

    updated, new_id = catalog.add(lead_statuses, {"name": "Callback", "color": "#000000", "order": 1})

    assert new_id == "13"
    created = catalog.get(updated, "13")
    assert isinstance(created, LeadStatus)
    assert created.order == 13
    assert len(lead_statuses) == 12


def test_add_retries_on_id_collision(lead_statuses: list[Status]) -> None:
    catalog = StatusCatalog("lead", id_factory=_sequence_ids("1", "2", "fresh"))

    _, new_id = catalog.add(lead_statuses, {"name": "Dup"})

    assert new_id == "fresh"


def test_add_to_empty_collection_starts_at_one() -> None:
    catalog = StatusCatalog("payment", id_factory=_sequence_ids("p1"))

    updated, _ = catalog.add([], PaymentStatus(id="ignored", name="Pending", requires_action=True))

    assert updated[0].id == "p1"
    assert updated[0].order == 1
    assert isinstance(updated[0], PaymentStatus)
    assert updated[0].requires_action is True


def test_update_merges_patch_and_keeps_id(lead_statuses: list[Status]) -> None:
    catalog = StatusCatalog("lead")

    updated = catalog.update(lead_statuses, "2", {"name": "Working", "id": "999"})

    status = catalog.get(updated, "2")
    assert status is not None
    assert status.name == "Working"
    assert catalog.get(updated, "999") is None
    assert catalog.get(lead_statuses, "2").name == "In Progress"


def test_update_unknown_status_raises(lead_statuses: list[Status]) -> None:
    with pytest.raises(StatusNotFoundError) as exc_info:
        StatusCatalog("lead").update(lead_statuses, "404", {"name": "Nope"})

    assert exc_info.value.kind == "lead"
    assert exc_info.value.status_id == "404"


def test_remove_is_a_no_op_for_unknown_ids(lead_statuses: list[Status]) -> None:
    catalog = StatusCatalog("lead")

    assert catalog.remove(lead_statuses, "404") == lead_statuses
    assert len(catalog.remove(lead_statuses, "9")) == 11


def test_reorder_assigns_dense_positions(lead_statuses: list[Status]) -> None:
    catalog = StatusCatalog("lead")

    reordered = catalog.reorder(lead_statuses, ["12", "1", "unknown", "1"])

    ordered = catalog.list(reordered)
    assert [status.id for status in ordered[:3]] == ["12", "1", "2"]
    assert [status.order for status in ordered] == list(range(1, 13))


def test_multiple_defaults_are_reported_not_fixed(lead_statuses: list[Status]) -> None:
    catalog = StatusCatalog("lead")
    statuses = catalog.update(lead_statuses, "2", {"is_default": True})

    assert catalog.has_multiple_defaults(statuses)
    assert [status.id for status in catalog.defaults(statuses)] == ["1", "2"]
    assert catalog.resolve_default(statuses).id == "1"


def test_resolve_default_prefers_requested_id(lead_statuses: list[Status]) -> None:
    catalog = StatusCatalog("lead")

    assert catalog.resolve_default(lead_statuses, preferred_id="3").id == "3"
    assert catalog.resolve_default(lead_statuses, preferred_id="404").id == "1"
    assert catalog.resolve_default([]) is None


def test_resolve_default_without_marker_uses_first_in_order() -> None:
    catalog = StatusCatalog("task")
    statuses = [Status(id="x", name="X", order=5), Status(id="y", name="Y", order=2)]

    assert catalog.resolve_default(statuses).id == "y"


def test_final_statuses_and_duplicates(lead_statuses: list[Status]) -> None:
    catalog = StatusCatalog("lead")

    assert [status.id for status in catalog.final_statuses(lead_statuses)] == ["8", "9", "10", "11", "12"]
    assert catalog.duplicate_ids([*lead_statuses, lead_statuses[0]]) == ["1"]

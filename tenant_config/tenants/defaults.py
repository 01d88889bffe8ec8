from __future__ import annotations

from typing import Any

from tenant_config.tenants.schemas import (
    STATUS_MODELS,
    Branding,
    ClientConfiguration,
    FeatureValue,
    Status,
    StatusKind,
    TenantSettings,
    Workflow,
)


DEFAULT_PRIMARY_COLOR = "#3b82f6"
DEFAULT_SECONDARY_COLOR = "#1e40af"

_LEAD_STATUSES: list[dict[str, Any]] = [
    {"id": "1", "name": "New", "color": "#3b82f6", "order": 1, "is_default": True, "allowed_transitions": ["2", "4", "5"]},
    {"id": "2", "name": "In Progress", "color": "#f59e0b", "order": 2, "allowed_transitions": ["3", "5", "6"]},
    {"id": "3", "name": "Quote Sent", "color": "#8b5cf6", "order": 3, "allowed_transitions": ["7", "8", "9"]},
    {"id": "4", "name": "No Answer", "color": "#ef4444", "order": 4, "allowed_transitions": ["5", "10"]},
    {"id": "5", "name": "No Answer 2", "color": "#dc2626", "order": 5, "allowed_transitions": ["10", "11"]},
    {"id": "6", "name": "Thinking It Over", "color": "#6b7280", "order": 6, "allowed_transitions": ["3", "9"]},
    {"id": "7", "name": "Awaiting Signature", "color": "#10b981", "order": 7, "allowed_transitions": ["8", "9"]},
    {"id": "8", "name": "Deal Closed", "color": "#059669", "order": 8, "is_final": True},
    {"id": "9", "name": "Not Interested", "color": "#6b7280", "order": 9, "is_final": True},
    {"id": "10", "name": "Removed From List", "color": "#374151", "order": 10, "is_final": True},
    {"id": "11", "name": "Wrong Number", "color": "#9ca3af", "order": 11, "is_final": True},
    {"id": "12", "name": "Existing Customer", "color": "#10b981", "order": 12, "is_final": True},
]

_TASK_STATUSES: list[dict[str, Any]] = [
    {"id": "1", "name": "Pending", "color": "#6b7280", "order": 1, "is_default": True},
    {"id": "2", "name": "In Progress", "color": "#f59e0b", "order": 2},
    {"id": "3", "name": "Completed", "color": "#10b981", "order": 3, "is_final": True},
    {"id": "4", "name": "Cancelled", "color": "#ef4444", "order": 4, "is_final": True},
]

_CUSTOMER_STATUSES: list[dict[str, Any]] = [
    {"id": "1", "name": "Active", "color": "#10b981", "order": 1, "is_default": True, "icon": "✅"},
    {"id": "2", "name": "Awaiting Start", "color": "#f59e0b", "order": 2, "icon": "⏳"},
    {"id": "3", "name": "VIP", "color": "#8b5cf6", "order": 3, "icon": "⭐"},
    {"id": "4", "name": "Suspended", "color": "#ef4444", "order": 4, "icon": "⏸️"},
    {"id": "5", "name": "Inactive", "color": "#6b7280", "order": 5, "icon": "❌"},
]

_PAYMENT_STATUSES: list[dict[str, Any]] = [
    {"id": "1", "name": "Awaiting Payment", "color": "#f59e0b", "order": 1, "is_default": True, "icon": "⏳", "requires_action": True},
    {"id": "2", "name": "Paid", "color": "#10b981", "order": 2, "icon": "✅"},
    {"id": "3", "name": "Partially Paid", "color": "#8b5cf6", "order": 3, "icon": "📊", "requires_action": True},
    {"id": "4", "name": "Cancelled", "color": "#ef4444", "order": 4, "icon": "❌"},
    {"id": "5", "name": "Refunded", "color": "#dc2626", "order": 5, "icon": "↩️"},
    {"id": "6", "name": "Debt", "color": "#b91c1c", "order": 6, "icon": "⚠️", "requires_action": True},
]

_DEFAULT_STATUS_ROWS: dict[StatusKind, list[dict[str, Any]]] = {
    "lead": _LEAD_STATUSES,
    "task": _TASK_STATUSES,
    "customer": _CUSTOMER_STATUSES,
    "payment": _PAYMENT_STATUSES,
}

DEFAULT_LEAD_SOURCES: tuple[str, ...] = (
    "Facebook",
    "Google",
    "Referral",
    "Website",
    "Phone",
    "Other",
    "LinkedIn",
    "Instagram",
    "TikTok",
    "Trade Show",
    "Conference",
)

# Order is the canonical enumeration order surfaced to consumers.
_FEATURE_CATALOG_ROWS: tuple[tuple[str, str], ...] = (
    ("leads", "Leads"),
    ("tasks", "Tasks"),
    ("calendar", "Calendar"),
    ("reminders", "Reminders"),
    ("customers", "Customers"),
    ("attendance", "Attendance"),
    ("reports", "Reports"),
    ("dialer", "Dialer"),
    ("userManagement", "User Management"),
)

FeatureCatalog = dict[str, FeatureValue]

DEFAULT_FEATURE_CATALOG: FeatureCatalog = {key: FeatureValue(name=name) for key, name in _FEATURE_CATALOG_ROWS}

LEGACY_FEATURE_ALIASES: dict[str, str] = {
    "enableTasks": "tasks",
    "enableReports": "reports",
    "enableCalendar": "calendar",
    "enableCustomers": "customers",
}

DEFAULT_TEMPLATE_SEED: tuple[dict[str, Any], ...] = (
    {
        "name": "Greeting",
        "type": "whatsapp",
        "content": "Hello {name}! Thank you for contacting us. We will get back to you shortly.",
        "variables": ["name"],
    },
    {
        "name": "Follow-up",
        "type": "whatsapp",
        "content": "Hi {name}, just checking in. We have a special offer for you.",
        "variables": ["name"],
    },
    {
        "name": "Welcome",
        "type": "email",
        "subject": "Welcome!",
        "content": "Hello {name}, welcome aboard! We are glad you joined us.",
        "variables": ["name"],
    },
    {
        "name": "Price Quote",
        "type": "email",
        "subject": "Your price quote",
        "content": "Hi {name}, attached is the price quote you requested. We would be happy to talk.",
        "variables": ["name"],
    },
)


def default_statuses(kind: StatusKind) -> list[Status]:
    model = STATUS_MODELS[kind]
    return [model.model_validate(row) for row in _DEFAULT_STATUS_ROWS[kind]]


def default_status_rows(kind: StatusKind) -> list[dict[str, Any]]:
    return [default.model_dump(mode="json") for default in default_statuses(kind)]


def default_features(catalog: FeatureCatalog | None = None) -> dict[str, FeatureValue]:
    source = catalog if catalog is not None else DEFAULT_FEATURE_CATALOG
    return {key: value.model_copy(deep=True) for key, value in source.items()}


def create_default_configuration(tenant_id: str, name: str = "") -> ClientConfiguration:
    return ClientConfiguration(
        id=tenant_id,
        name=name,
        branding=Branding(
            company_name=name,
            primary_color=DEFAULT_PRIMARY_COLOR,
            secondary_color=DEFAULT_SECONDARY_COLOR,
        ),
        lead_statuses=default_statuses("lead"),
        task_statuses=default_statuses("task"),
        customer_statuses=default_statuses("customer"),
        payment_statuses=default_statuses("payment"),
        lead_sources=list(DEFAULT_LEAD_SOURCES),
        features=default_features(),
        settings=TenantSettings(),
        workflows=Workflow(),
    )

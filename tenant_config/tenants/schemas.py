from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


StatusKind = Literal["lead", "task", "customer", "payment"]
STATUS_KINDS: tuple[StatusKind, ...] = ("lead", "task", "customer", "payment")

TemplateType = Literal["whatsapp", "email", "sms"]
CustomFieldType = Literal["text", "number", "date", "select", "multiselect", "boolean", "email", "phone", "url"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class Status(WireModel):
    id: str
    name: str
    color: str = "#6b7280"
    order: int = 0
    is_default: bool = False
    is_final: bool = False
    description: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class LeadStatus(Status):
    allowed_transitions: list[str] | None = None
    requires_approval: bool = False
    auto_actions: list[str] = Field(default_factory=list)

    @field_validator("allowed_transitions", mode="before")
    @classmethod
    def coerce_transition_ids(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return [_coerce_id(item) for item in value]
        return value


class TaskStatus(Status):
    pass


class CustomerStatus(Status):
    icon: str | None = None


class PaymentStatus(Status):
    icon: str | None = None
    requires_action: bool = False


STATUS_MODELS: dict[StatusKind, type[Status]] = {
    "lead": LeadStatus,
    "task": TaskStatus,
    "customer": CustomerStatus,
    "payment": PaymentStatus,
}

STATUS_FIELDS: dict[StatusKind, str] = {
    "lead": "lead_statuses",
    "task": "task_statuses",
    "customer": "customer_statuses",
    "payment": "payment_statuses",
}


class FeatureValue(WireModel):
    name: str
    enabled: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)


FeatureSet = dict[str, FeatureValue]


class MessageTemplate(WireModel):
    id: str
    tenant_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("tenant_id", "tenantId", "client_id", "clientId"),
    )
    name: str = Field(validation_alias=AliasChoices("name", "template_name", "templateName"))
    type: TemplateType = Field(
        default="whatsapp",
        validation_alias=AliasChoices("type", "template_type", "templateType"),
    )
    title: str | None = None
    subject: str | None = None
    content: str = Field(default="", validation_alias=AliasChoices("content", "message"))
    variables: list[str] = Field(default_factory=list)
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    created_at: datetime | None = Field(default=None, validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: datetime | None = Field(default=None, validation_alias=AliasChoices("updated_at", "updatedAt"))

    @field_validator("id", "tenant_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)


class CustomFieldValidation(WireModel):
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    message: str | None = None


class CustomField(WireModel):
    id: str
    name: str
    type: CustomFieldType = "text"
    required: bool = False
    options: list[str] | None = None
    default_value: Any = None
    validation: CustomFieldValidation | None = None
    show_in_list: bool = True
    show_in_form: bool = True
    category: str | None = None


class Branding(WireModel):
    company_name: str = ""
    logo_url: str | None = None
    favicon: str | None = None
    primary_color: str = "#3b82f6"
    secondary_color: str = "#1e40af"
    accent_color: str = "#10b981"
    font_family: str | None = None


class TenantSettings(WireModel):
    date_format: str = "dd/MM/yyyy"
    time_format: str = "24h"
    currency: str = "ILS"
    language: str = "he"
    timezone: str = "Asia/Jerusalem"
    default_lead_status: str = "1"
    default_customer_status: str = "1"
    default_payment_status: str = "1"
    auto_assign_leads: bool = False
    require_callback_date: bool = False
    enable_lead_scoring: bool = True


class AutoStatusChange(WireModel):
    id: str
    name: str = ""
    from_status: str
    to_status: str
    conditions: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True


class NotificationRule(WireModel):
    id: str
    name: str = ""
    trigger: Literal["status_change", "time_based", "field_change"] = "status_change"
    conditions: dict[str, Any] = Field(default_factory=dict)
    actions: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True


class Workflow(WireModel):
    lead_to_customer_statuses: list[str] = Field(default_factory=lambda: ["8"])
    auto_status_changes: list[AutoStatusChange] = Field(default_factory=list)
    notifications: list[NotificationRule] = Field(default_factory=list)
    message_templates: list[MessageTemplate] = Field(default_factory=list)


class ClientConfiguration(WireModel):
    id: str
    name: str = ""
    branding: Branding = Field(default_factory=Branding)
    lead_statuses: list[LeadStatus] = Field(default_factory=list)
    task_statuses: list[TaskStatus] = Field(default_factory=list)
    customer_statuses: list[CustomerStatus] = Field(default_factory=list)
    payment_statuses: list[PaymentStatus] = Field(default_factory=list)
    lead_sources: list[str] = Field(default_factory=list)
    custom_fields: list[CustomField] = Field(default_factory=list)
    features: dict[str, FeatureValue] = Field(default_factory=dict)
    settings: TenantSettings = Field(default_factory=TenantSettings)
    workflows: Workflow = Field(default_factory=Workflow)
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    @property
    def company_name(self) -> str:
        return self.branding.company_name

    @property
    def primary_color(self) -> str:
        return self.branding.primary_color

    @property
    def secondary_color(self) -> str:
        return self.branding.secondary_color

    @property
    def logo_url(self) -> str | None:
        return self.branding.logo_url

    @property
    def message_templates(self) -> list[MessageTemplate]:
        return self.workflows.message_templates

    def statuses(self, kind: StatusKind) -> list[Status]:
        return list(getattr(self, STATUS_FIELDS[kind]))


class ResolvedConfiguration(BaseModel):
    tenant_id: str
    lead_statuses: list[LeadStatus]
    customer_statuses: list[CustomerStatus]
    payment_statuses: list[PaymentStatus]
    features: dict[str, FeatureValue]
    message_templates: list[MessageTemplate]


class TenantDraft(BaseModel):
    name: str = Field(min_length=1)
    company_name: str = Field(min_length=1)
    primary_color: str | None = None
    secondary_color: str | None = None
    logo_url: str | None = None
    lead_statuses: list[LeadStatus] | None = None
    customer_statuses: list[CustomerStatus] | None = None
    payment_statuses: list[PaymentStatus] | None = None
    features: dict[str, Any] | None = None
    message_templates: list[MessageTemplate] | None = None


class TenantUpdate(BaseModel):
    name: str | None = None
    company_name: str | None = None
    primary_color: str | None = None
    secondary_color: str | None = None
    logo_url: str | None = None
    lead_statuses: list[LeadStatus] | None = None
    task_statuses: list[TaskStatus] | None = None
    customer_statuses: list[CustomerStatus] | None = None
    payment_statuses: list[PaymentStatus] | None = None
    features: dict[str, Any] | None = None
    message_templates: list[MessageTemplate] | None = None


class ConfigurationUpdate(BaseModel):
    lead_statuses: list[LeadStatus] | None = None
    customer_statuses: list[CustomerStatus] | None = None
    payment_statuses: list[PaymentStatus] | None = None
    features: dict[str, Any] | None = None
    message_templates: list[MessageTemplate] | None = None


class PersistedCacheEnvelope(BaseModel):
    version: int = 0
    state: dict[str, Any] = Field(default_factory=dict)

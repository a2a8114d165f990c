"""Pydantic schemas for notification rules, dispatch instructions and logs.

Rule conditions and actions are closed tagged unions: one variant per
operator, one per channel. Anything else is rejected when the rule is saved.
"""
import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from app.core.exceptions import RuleEvaluationError
from app.models.notification import NotificationChannel, NotificationTrigger
from app.services.templating import validate_template


# ─── Conditions ───

class _ConditionBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field: str = Field(min_length=1, description="Dotted path into the event payload")


class EqualsCondition(_ConditionBase):
    operator: Literal["equals"]
    value: Any


class ContainsCondition(_ConditionBase):
    operator: Literal["contains"]
    value: str


class GreaterThanCondition(_ConditionBase):
    operator: Literal["greater_than"]
    value: float


class LessThanCondition(_ConditionBase):
    operator: Literal["less_than"]
    value: float


class InCondition(_ConditionBase):
    operator: Literal["in"]
    value: list[Any]


class NotInCondition(_ConditionBase):
    operator: Literal["not_in"]
    value: list[Any]


Condition = Annotated[
    Union[
        EqualsCondition,
        ContainsCondition,
        GreaterThanCondition,
        LessThanCondition,
        InCondition,
        NotInCondition,
    ],
    Field(discriminator="operator"),
]


# ─── Actions ───

class _ActionBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    recipients: list[str] = Field(min_length=1)
    template: str | None = None
    subject: str | None = None
    delay_minutes: int | None = Field(default=None, ge=0)

    @field_validator("template", "subject")
    @classmethod
    def _placeholders_well_formed(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                validate_template(v)
            except RuleEvaluationError as exc:
                raise ValueError(exc.message)
        return v

    @field_validator("recipients")
    @classmethod
    def _recipients_well_formed(cls, v: list[str]) -> list[str]:
        for recipient in v:
            if not recipient.strip():
                raise ValueError("recipient must not be blank")
            try:
                validate_template(recipient)
            except RuleEvaluationError as exc:
                raise ValueError(exc.message)
        return v


class EmailAction(_ActionBase):
    channel: Literal["email"]


class SlackAction(_ActionBase):
    channel: Literal["slack"]


class TeamsAction(_ActionBase):
    channel: Literal["teams"]


class WebhookAction(_ActionBase):
    channel: Literal["webhook"]


class RealtimeAction(_ActionBase):
    channel: Literal["realtime"]


Action = Annotated[
    Union[EmailAction, SlackAction, TeamsAction, WebhookAction, RealtimeAction],
    Field(discriminator="channel"),
]

conditions_adapter = TypeAdapter(list[Condition])
actions_adapter = TypeAdapter(list[Action])


# ─── Rules ───

class NotificationRuleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    trigger: NotificationTrigger
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(min_length=1)
    is_active: bool = True


class NotificationRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    trigger: NotificationTrigger | None = None
    conditions: list[Condition] | None = None
    actions: list[Action] | None = Field(default=None, min_length=1)
    is_active: bool | None = None


class NotificationRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    trigger: str
    conditions: list[dict]
    actions: list[dict]
    is_active: bool
    created_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class NotificationRuleListResponse(BaseModel):
    items: list[NotificationRuleOut]
    total: int


# ─── Dispatch ───

class DispatchInstruction(BaseModel):
    """One action of a firing rule, rendered and ready for the dispatcher."""

    rule_id: uuid.UUID | None = None
    channel: NotificationChannel
    recipients: list[str]
    subject: str
    content: str
    delay_minutes: int | None = None
    triggered_by: uuid.UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AdhocNotificationRequest(BaseModel):
    channel: NotificationChannel
    recipients: list[str] = Field(min_length=1)
    subject: str = Field(min_length=1, max_length=500)
    content: str = Field(min_length=1)
    delay_minutes: int | None = Field(default=None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ─── Logs ───

class NotificationLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    rule_id: uuid.UUID | None
    channel: str
    recipient: str
    subject: str
    content: str
    status: str
    error_message: str | None
    scheduled_at: datetime
    attempted_at: datetime | None
    sent_at: datetime | None
    delivered_at: datetime | None
    triggered_by: uuid.UUID | None
    metadata: dict | None = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime


class NotificationLogListResponse(BaseModel):
    items: list[NotificationLogOut]
    total: int


class DispatchResult(BaseModel):
    items: list[NotificationLogOut]


# ─── User preferences ───

class UserNotificationSettingIn(BaseModel):
    trigger: NotificationTrigger
    channel: NotificationChannel
    is_enabled: bool = True
    destination: str | None = Field(default=None, max_length=500)


class UserNotificationSettingsUpdate(BaseModel):
    """Replaces the user's whole preference set."""

    settings: list[UserNotificationSettingIn]

    @field_validator("settings")
    @classmethod
    def _unique_pairs(cls, value: list[UserNotificationSettingIn]) -> list[UserNotificationSettingIn]:
        seen = set()
        for item in value:
            key = (item.trigger, item.channel)
            if key in seen:
                raise ValueError(f"duplicate setting for {item.trigger.value}/{item.channel.value}")
            seen.add(key)
        return value


class UserNotificationSettingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trigger: str
    channel: str
    is_enabled: bool
    destination: str | None
    updated_at: datetime


class UserNotificationSettingsOut(BaseModel):
    user_id: uuid.UUID
    settings: list[UserNotificationSettingOut]

"""Inbound Thinkific webhook envelope and typed payload models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import InvalidWebhookPayload

PHONE_FIELD_LABEL = "Phone"


class EventKind(str, Enum):
    SIGN_IN = "sign_in"
    SIGN_UP = "sign_up"
    PROFILE_UPDATED = "profile_updated"
    ENROLLMENT_CREATED = "enrollment_created"
    ENROLLMENT_PROGRESS = "enrollment_progress"
    ORDER_CREATED = "order_created"


class WebhookEnvelope(BaseModel):
    """Decoded webhook body as delivered by the platform."""

    id: Optional[str] = None
    resource: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    payload: Dict[str, Any]
    created_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @property
    def handler_key(self) -> str:
        return f"{self.resource}:{self.action}"

    @classmethod
    def parse(cls, body: Any) -> "WebhookEnvelope":
        if not isinstance(body, dict):
            raise InvalidWebhookPayload("Invalid webhook payload")
        if not body.get("resource") or not body.get("action") or not isinstance(body.get("payload"), dict):
            raise InvalidWebhookPayload("Invalid webhook payload")
        return cls.model_validate(body)


class CustomProfileField(BaseModel):
    label: str = ""
    value: Optional[str] = None


class UserPayload(BaseModel):
    id: Optional[Union[int, str]] = None
    email: str = Field(..., min_length=1)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    custom_profile_fields: List[CustomProfileField] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_phone_number(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("phone") and data.get("phone_number"):
            data = {**data, "phone": data["phone_number"]}
        return data

    @field_validator("custom_profile_fields", mode="before")
    @classmethod
    def _drop_malformed_fields(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, dict)]

    @field_validator("email")
    @classmethod
    def _reject_blank_email(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("email cannot be blank")
        return value

    def resolved_phone(self) -> Optional[str]:
        if self.phone and self.phone.strip():
            return self.phone.strip()
        for field in self.custom_profile_fields:
            if field.label == PHONE_FIELD_LABEL and field.value:
                return field.value.strip() or None
        return None


class CourseRef(BaseModel):
    id: str
    name: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


def _nest_user(data: Dict[str, Any]) -> Dict[str, Any]:
    if "user" not in data:
        email = data.get("user_email") or data.get("email")
        if email:
            data = {
                **data,
                "user": {
                    "email": email,
                    "first_name": data.get("user_first_name") or data.get("first_name"),
                    "last_name": data.get("user_last_name") or data.get("last_name"),
                },
            }
    return data


class EnrollmentPayload(BaseModel):
    id: Optional[str] = None
    user: UserPayload
    course: CourseRef
    percentage_completed: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _nest_user(data)
        if "course" not in data and data.get("course_id") is not None:
            data = {**data, "course": {"id": data["course_id"], "name": data.get("course_name") or ""}}
        if isinstance(data.get("id"), int):
            data = {**data, "id": str(data["id"])}
        return data

    @field_validator("percentage_completed", mode="before")
    @classmethod
    def _parse_percentage(cls, value: Any) -> Any:
        if isinstance(value, str):
            return float(value)
        return value


class OrderPayload(BaseModel):
    id: Optional[str] = None
    user: UserPayload
    bundle_name: str = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _nest_user(data)
        if not data.get("bundle_name") and data.get("product_name"):
            data = {**data, "bundle_name": data["product_name"]}
        if isinstance(data.get("id"), int):
            data = {**data, "id": str(data["id"])}
        return data


class UserEvent(BaseModel):
    kind: EventKind
    event_id: Optional[str] = None
    user: UserPayload


class EnrollmentEvent(BaseModel):
    kind: EventKind
    event_id: Optional[str] = None
    enrollment: EnrollmentPayload

    @property
    def user(self) -> UserPayload:
        return self.enrollment.user


class OrderEvent(BaseModel):
    kind: EventKind = EventKind.ORDER_CREATED
    event_id: Optional[str] = None
    order: OrderPayload

    @property
    def user(self) -> UserPayload:
        return self.order.user


InboundEvent = Union[UserEvent, EnrollmentEvent, OrderEvent]


def _user_from_payload(payload: Dict[str, Any]) -> UserPayload:
    candidate = payload.get("user") if isinstance(payload.get("user"), dict) else payload
    return UserPayload.model_validate(candidate)


def build_event(kind: EventKind, envelope: WebhookEnvelope) -> InboundEvent:
    """Decode the envelope payload into the typed event for ``kind``."""
    payload = envelope.payload
    if kind in (EventKind.SIGN_IN, EventKind.SIGN_UP, EventKind.PROFILE_UPDATED):
        return UserEvent(kind=kind, event_id=envelope.id, user=_user_from_payload(payload))
    if kind in (EventKind.ENROLLMENT_CREATED, EventKind.ENROLLMENT_PROGRESS):
        enrollment = EnrollmentPayload.model_validate(payload)
        return EnrollmentEvent(kind=kind, event_id=envelope.id or enrollment.id, enrollment=enrollment)
    if kind is EventKind.ORDER_CREATED:
        order = OrderPayload.model_validate(payload)
        return OrderEvent(event_id=envelope.id or order.id, order=order)
    raise ValueError(f"Unsupported event kind: {kind}")


__all__ = [
    "CourseRef",
    "CustomProfileField",
    "EnrollmentEvent",
    "EnrollmentPayload",
    "EventKind",
    "InboundEvent",
    "OrderEvent",
    "OrderPayload",
    "UserEvent",
    "UserPayload",
    "WebhookEnvelope",
    "build_event",
]

from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

SubscriptionStatus = Literal["active", "past_due", "unpaid", "canceled", "incomplete", "checkout_pending"]
EntitlementStatus = Literal["active", "canceled", "expired"]

SUBSCRIPTION_CHANGED_TYPES = ("customer.subscription.created", "customer.subscription.updated")


# Inbound events. ``obj`` keeps ``data.object`` untyped: which fields exist
# depends on the event type and the API version of the sending account.

class StripeEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    created: Optional[int] = None
    account: Optional[str] = None
    obj: Dict[str, Any] = Field(default_factory=dict)


class CheckoutSessionCompleted(StripeEvent):
    kind: Literal["checkout_session_completed"] = "checkout_session_completed"
    mode: Optional[str] = None
    subscription_id: Optional[str] = None


class SubscriptionChanged(StripeEvent):
    kind: Literal["subscription_changed"] = "subscription_changed"
    subscription_id: str = Field(min_length=1)


class SubscriptionDeleted(StripeEvent):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription_id: str = Field(min_length=1)


class InvoiceEvent(StripeEvent):
    kind: Literal["invoice"] = "invoice"


class UnhandledEvent(StripeEvent):
    kind: Literal["unhandled"] = "unhandled"


WebhookEvent = Union[CheckoutSessionCompleted, SubscriptionChanged, SubscriptionDeleted, InvoiceEvent, UnhandledEvent]


def _str_or_id(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_event(payload: Any) -> WebhookEvent:
    """Turn a decoded webhook body into a concrete event variant.

    Raises ``ValueError`` (pydantic's ``ValidationError`` included) when the
    envelope itself is malformed. Unknown types become ``UnhandledEvent``.
    """
    if not isinstance(payload, dict):
        raise ValueError("event payload must be a JSON object")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    obj = data.get("object") if isinstance(data.get("object"), dict) else {}
    base: Dict[str, Any] = {
        "id": payload.get("id") or "",
        "type": payload.get("type") or "",
        "created": payload.get("created"),
        "account": _str_or_id(payload.get("account")),
        "obj": obj,
    }
    event_type = base["type"]

    if event_type == "checkout.session.completed":
        return CheckoutSessionCompleted(
            **base,
            mode=_str_or_id(obj.get("mode")),
            subscription_id=_str_or_id(obj.get("subscription")),
        )
    if event_type in SUBSCRIPTION_CHANGED_TYPES:
        return SubscriptionChanged(**base, subscription_id=_str_or_id(obj.get("id")) or "")
    if event_type == "customer.subscription.deleted":
        return SubscriptionDeleted(**base, subscription_id=_str_or_id(obj.get("id")) or "")
    if event_type.startswith("invoice."):
        return InvoiceEvent(**base)
    return UnhandledEvent(**base)


# Converged state.

class SubscriptionRecord(BaseModel):
    fan_id: str
    creator_id: str
    plan_id: Optional[str] = None
    status: SubscriptionStatus
    mapped_status: SubscriptionStatus
    provider_status: str
    is_active: bool
    cancel_at_period_end: bool = False
    processor_customer_id: Optional[str] = None
    processor_subscription_id: str
    tenant_account_id: Optional[str] = None
    period_start: Optional[int] = None
    period_end: Optional[int] = None
    canceled_at: Optional[int] = None
    # set once a deletion event lands; the row is then final
    deleted_at: Optional[int] = None
    updated_at: int


class EntitlementRecord(BaseModel):
    user_id: str
    key: str
    creator_id: Optional[str] = None
    status: str
    provider_status: Optional[str] = None
    is_active: bool = False
    cancel_at_period_end: bool = False
    processor_customer_id: Optional[str] = None
    processor_subscription_id: Optional[str] = None
    period_start: Optional[int] = None
    period_end: Optional[int] = None
    updated_at: int

from __future__ import annotations

import pytest

from subsync.models import (
    CheckoutSessionCompleted,
    InvoiceEvent,
    SubscriptionChanged,
    SubscriptionDeleted,
    UnhandledEvent,
    parse_event,
)

from tests.fakes import make_event, make_subscription


def test_checkout_session_completed() -> None:
    event = parse_event(make_event(
        "checkout.session.completed",
        {"id": "cs_1", "mode": "subscription", "subscription": "sub_9"},
    ))
    assert isinstance(event, CheckoutSessionCompleted)
    assert event.mode == "subscription"
    assert event.subscription_id == "sub_9"
    assert event.account == "acct_C1"


def test_checkout_session_expanded_subscription() -> None:
    event = parse_event(make_event(
        "checkout.session.completed",
        {"id": "cs_1", "mode": "subscription", "subscription": {"id": "sub_9", "object": "subscription"}},
    ))
    assert event.subscription_id == "sub_9"


def test_checkout_session_payment_mode_has_no_subscription() -> None:
    event = parse_event(make_event("checkout.session.completed", {"id": "cs_1", "mode": "payment"}))
    assert isinstance(event, CheckoutSessionCompleted)
    assert event.subscription_id is None


@pytest.mark.parametrize("event_type", ["customer.subscription.created", "customer.subscription.updated"])
def test_subscription_changed(event_type: str) -> None:
    event = parse_event(make_event(event_type, make_subscription("sub_2")))
    assert isinstance(event, SubscriptionChanged)
    assert event.subscription_id == "sub_2"
    assert event.obj["status"] == "active"


def test_subscription_deleted() -> None:
    event = parse_event(make_event("customer.subscription.deleted", make_subscription("sub_3", status="canceled")))
    assert isinstance(event, SubscriptionDeleted)
    assert event.subscription_id == "sub_3"


def test_invoice_and_unknown_types() -> None:
    assert isinstance(parse_event(make_event("invoice.payment_succeeded", {"id": "in_1"})), InvoiceEvent)
    assert isinstance(parse_event(make_event("customer.created", {"id": "cus_1"})), UnhandledEvent)


def test_platform_event_has_no_account() -> None:
    event = parse_event(make_event("customer.subscription.updated", make_subscription(), account=None))
    assert event.account is None


def test_malformed_envelope_raises() -> None:
    with pytest.raises(ValueError):
        parse_event([])
    with pytest.raises(ValueError):
        parse_event({"type": "customer.subscription.updated"})
    with pytest.raises(ValueError):
        parse_event(make_event("customer.subscription.updated", {"status": "active"}))


def test_envelope_keeps_only_routing_fields() -> None:
    event = parse_event({**make_event("invoice.paid", {"id": "in_1"}), "livemode": True, "api_version": "2024-06-20"})
    assert set(type(event).model_fields) == {"id", "type", "created", "account", "obj", "kind"}
    assert event.obj == {"id": "in_1"}

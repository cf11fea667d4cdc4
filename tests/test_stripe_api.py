from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest
import stripe

from subsync.core.settings import Settings
from subsync.services.stripe_api import StripeGateway, ensure_stripe_configured, to_plain


@pytest.fixture(autouse=True)
def restore_stripe_globals(monkeypatch):
    monkeypatch.setattr(stripe, "api_key", None)
    monkeypatch.setattr(stripe, "max_network_retries", 0)
    monkeypatch.setattr(stripe, "api_version", stripe.api_version)


def record_calls(monkeypatch, resource: Any, returned: Dict[str, Any]) -> List[Tuple[str, Dict[str, Any]]]:
    calls: List[Tuple[str, Dict[str, Any]]] = []

    def fake_retrieve(object_id: str, **kwargs: Any) -> Any:
        calls.append((object_id, kwargs))
        return resource.construct_from(returned, "sk_test")

    monkeypatch.setattr(resource, "retrieve", fake_retrieve)
    return calls


def test_ensure_configured_requires_secret_key() -> None:
    with pytest.raises(RuntimeError):
        ensure_stripe_configured(Settings(stripe_secret_key=""))


def test_ensure_configured_sets_sdk_globals() -> None:
    ensure_stripe_configured(Settings(stripe_secret_key="sk_test_1", stripe_max_network_retries=3, stripe_api_version="2024-06-20"))
    assert stripe.api_key == "sk_test_1"
    assert stripe.max_network_retries == 3
    assert stripe.api_version == "2024-06-20"


def test_retrieve_subscription_on_connected_account(monkeypatch) -> None:
    calls = record_calls(monkeypatch, stripe.Subscription, {
        "id": "sub_1",
        "object": "subscription",
        "status": "active",
        "items": {"object": "list", "data": [{"id": "si_1", "object": "subscription_item", "price": {"id": "price_1", "object": "price"}}]},
    })
    sub = StripeGateway(Settings(stripe_secret_key="sk_test")).retrieve_subscription("sub_1", stripe_account="acct_X")

    assert calls == [("sub_1", {"expand": ["latest_invoice"], "stripe_account": "acct_X"})]
    assert type(sub) is dict
    assert type(sub["items"]) is dict
    assert type(sub["items"]["data"][0]) is dict
    assert sub["items"]["data"][0]["price"]["id"] == "price_1"


def test_retrieve_subscription_on_platform(monkeypatch) -> None:
    calls = record_calls(monkeypatch, stripe.Subscription, {"id": "sub_1", "object": "subscription"})
    StripeGateway(Settings(stripe_secret_key="sk_test")).retrieve_subscription("sub_1")
    assert calls == [("sub_1", {"expand": ["latest_invoice"]})]


def test_retrieve_invoice_expands_lines(monkeypatch) -> None:
    calls = record_calls(monkeypatch, stripe.Invoice, {
        "id": "in_1",
        "object": "invoice",
        "lines": {"object": "list", "data": [{"id": "il_1", "period": {"start": 1, "end": 2}}]},
    })
    inv = StripeGateway(Settings(stripe_secret_key="sk_test")).retrieve_invoice("in_1", stripe_account="acct_X")
    assert calls == [("in_1", {"expand": ["lines"], "stripe_account": "acct_X"})]
    assert inv["lines"]["data"][0]["period"] == {"start": 1, "end": 2}


def test_gateway_refuses_without_secret_key(monkeypatch) -> None:
    calls = record_calls(monkeypatch, stripe.Subscription, {"id": "sub_1"})
    with pytest.raises(RuntimeError):
        StripeGateway(Settings(stripe_secret_key="")).retrieve_subscription("sub_1")
    assert calls == []


class LegacyStripeObject(dict):
    def to_dict(self) -> Dict[str, Any]:
        return dict(self)

    def to_dict_recursive(self) -> Dict[str, Any]:
        return {"converted": True, **self}


def test_to_plain_variants() -> None:
    assert to_plain(None) == {}
    assert to_plain({"id": "x"}) == {"id": "x"}
    assert to_plain(LegacyStripeObject(id="x")) == {"converted": True, "id": "x"}

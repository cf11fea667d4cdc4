from __future__ import annotations

from typing import Any, Dict, Optional

import stripe

from subsync.core.settings import Settings


def ensure_stripe_configured(settings: Settings) -> None:
    if not settings.stripe_secret_key:
        raise RuntimeError("Stripe is not configured (STRIPE_SECRET_KEY)")
    stripe.api_key = settings.stripe_secret_key
    stripe.max_network_retries = settings.stripe_max_network_retries
    if settings.stripe_api_version:
        stripe.api_version = settings.stripe_api_version


def to_plain(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    # StripeObject -> plain nested dicts; older SDKs only recurse via to_dict_recursive
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        try:
            return to_dict(recursive=True)
        except TypeError:
            return obj.to_dict_recursive()
    return dict(obj)


class StripeGateway:
    """Read-only access to Stripe objects, scoped to a connected account when given."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _scope(self, stripe_account: Optional[str]) -> Dict[str, Any]:
        ensure_stripe_configured(self.settings)
        kwargs: Dict[str, Any] = {}
        if stripe_account:
            kwargs["stripe_account"] = stripe_account
        return kwargs

    def retrieve_subscription(self, subscription_id: str, *, stripe_account: Optional[str] = None) -> Dict[str, Any]:
        sub = stripe.Subscription.retrieve(
            subscription_id,
            expand=["latest_invoice"],
            **self._scope(stripe_account),
        )
        return to_plain(sub)

    def retrieve_invoice(self, invoice_id: str, *, stripe_account: Optional[str] = None) -> Dict[str, Any]:
        inv = stripe.Invoice.retrieve(
            invoice_id,
            expand=["lines"],
            **self._scope(stripe_account),
        )
        return to_plain(inv)

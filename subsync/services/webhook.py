from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import stripe
from botocore.exceptions import BotoCoreError, ClientError

from subsync.core.settings import Settings
from subsync.core.tables import Tables
from subsync.models import (
    CheckoutSessionCompleted,
    InvoiceEvent,
    SubscriptionChanged,
    SubscriptionDeleted,
    WebhookEvent,
)
from subsync.services.identity import IdentityResolver, safe_str
from subsync.services.periods import PeriodNormalizer, PeriodUnavailable
from subsync.services.reconcile import SubscriptionReconciler
from subsync.services.store import SubscriptionStore
from subsync.services.stripe_api import StripeGateway

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    PROCESSED = "processed"
    IGNORED = "ignored"
    SKIPPED = "skipped"
    FAILED = "failed"
    INVALID_SIGNATURE = "invalid_signature"


@dataclass(frozen=True)
class DispatchResult:
    outcome: Outcome
    detail: str = ""


def processed(detail: str = "") -> DispatchResult:
    return DispatchResult(Outcome.PROCESSED, detail)


def ignored(detail: str = "") -> DispatchResult:
    return DispatchResult(Outcome.IGNORED, detail)


def skipped(detail: str = "") -> DispatchResult:
    return DispatchResult(Outcome.SKIPPED, detail)


class WebhookProcessor:
    """Routes one authenticated event to the matching reconciliation path.

    Every call ends in exactly one outcome. Unresolvable identities and
    underivable periods are ``skipped``; Stripe and DynamoDB errors are logged
    and reported as ``failed``. Nothing here raises for those cases, so the
    endpoint can acknowledge the delivery either way.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: StripeGateway,
        resolver: IdentityResolver,
        reconciler: SubscriptionReconciler,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.resolver = resolver
        self.reconciler = reconciler

    def handle(self, event: WebhookEvent) -> DispatchResult:
        try:
            if isinstance(event, CheckoutSessionCompleted):
                return self._checkout_completed(event)
            if isinstance(event, SubscriptionChanged):
                return self._subscription_changed(event)
            if isinstance(event, SubscriptionDeleted):
                return self._subscription_deleted(event)
            if isinstance(event, InvoiceEvent):
                return ignored("invoice events carry no subscription state")
            return ignored(f"unhandled event type {event.type}")
        except PeriodUnavailable as exc:
            logger.warning(f"event {event.id} ({event.type}): period derivation failed: {exc}")
            return skipped("period unavailable")
        except (stripe.StripeError, ClientError, BotoCoreError) as exc:
            logger.exception(f"event {event.id} ({event.type}): downstream failure: {exc}")
            return DispatchResult(Outcome.FAILED, type(exc).__name__)

    def _checkout_completed(self, event: CheckoutSessionCompleted) -> DispatchResult:
        if event.mode != "subscription":
            return ignored(f"checkout mode {event.mode or 'unknown'}")
        if not event.subscription_id:
            return ignored("checkout session without subscription")
        sub = self.gateway.retrieve_subscription(event.subscription_id, stripe_account=event.account)
        return self._reconcile_subscription(sub, event.account, fetched=True)

    def _subscription_changed(self, event: SubscriptionChanged) -> DispatchResult:
        sub: Dict[str, Any] = event.obj
        fetched = False
        if self.settings.stripe_refetch_subscriptions:
            sub = self.gateway.retrieve_subscription(event.subscription_id, stripe_account=event.account)
            fetched = True
        return self._reconcile_subscription(sub, event.account, fetched=fetched)

    def _reconcile_subscription(self, sub: Dict[str, Any], account: Optional[str], *, fetched: bool) -> DispatchResult:
        sub_id = safe_str(sub.get("id"))
        user_id = self.resolver.resolve_platform_user(sub, sub_id)
        if user_id:
            ent = self.reconciler.reconcile_platform_entitlement(sub, user_id, tenant_account_id=account, fetched=fetched)
            if ent is None:
                return skipped("platform entitlement not reconcilable")
            return processed(f"{ent.key} {ent.status} for {user_id}")

        if self.resolver.is_creator_plan(sub):
            logger.info(f"subscription {sub_id}: {self.resolver.creator_plan_key} without user_id; skipping")
            return skipped("platform user not resolvable")

        record = self.reconciler.reconcile_fan_subscription(sub, tenant_account_id=account, fetched=fetched)
        if record is None:
            return skipped("identity not resolvable")
        return processed(f"subscription {record.status} for {record.fan_id}->{record.creator_id}")

    def _subscription_deleted(self, event: SubscriptionDeleted) -> DispatchResult:
        sub = event.obj
        sub_id = event.subscription_id
        user_id = self.resolver.resolve_platform_user(sub, sub_id)
        if user_id:
            expired = self.reconciler.expire_platform_entitlement(user_id, sub_id, sub)
            return processed("entitlement expired" if expired else "entitlement held by another subscription")

        if self.resolver.is_creator_plan(sub):
            return skipped("platform user not resolvable")

        removed = self.reconciler.delete_fan_subscription(sub_id, sub, tenant_account_id=event.account)
        return processed("subscription removed" if removed else "nothing stored")


def build_processor(settings: Settings, tables: Tables) -> WebhookProcessor:
    store = SubscriptionStore(tables)
    gateway = StripeGateway(settings)
    resolver = IdentityResolver(store, creator_plan_key=settings.creator_plan_key)
    normalizer = PeriodNormalizer(gateway, repair_seconds=settings.period_repair_seconds)
    reconciler = SubscriptionReconciler(store, resolver, normalizer)
    return WebhookProcessor(settings, gateway, resolver, reconciler)

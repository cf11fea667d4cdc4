from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from subsync.core.time import now_ts, to_epoch
from subsync.models import EntitlementRecord, SubscriptionRecord
from subsync.services.identity import IdentityResolver, customer_id_of, safe_str
from subsync.services.periods import PeriodNormalizer, direct_period
from subsync.services.store import FAN_ENTITLEMENT_KEY, SubscriptionStore

logger = logging.getLogger(__name__)

STATUS_MAP: Dict[str, str] = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "unpaid",
    "paused": "unpaid",
    "canceled": "canceled",
    "incomplete": "incomplete",
    "incomplete_expired": "incomplete",
    "checkout_pending": "checkout_pending",
}
PLATFORM_ACTIVE_STATUSES = frozenset({"active", "trialing"})
PRE_ACTIVATION = frozenset({"incomplete", "checkout_pending"})


def map_status(stripe_status: Any) -> str:
    return STATUS_MAP.get(safe_str(stripe_status).lower(), "incomplete")


def map_platform_status(stripe_status: Any) -> str:
    return "active" if safe_str(stripe_status).lower() in PLATFORM_ACTIVE_STATUSES else "canceled"


def effective_status(status: str, period_end: Optional[int], now: int) -> str:
    # a canceled subscriber keeps access until the end of the period already paid for
    if status == "canceled" and period_end and int(period_end) > now:
        return "active"
    return status


def has_access(status: str, period_end: Optional[int], now: int) -> bool:
    return effective_status(status, period_end, now) == "active"


class SubscriptionReconciler:
    def __init__(
        self,
        store: SubscriptionStore,
        resolver: IdentityResolver,
        normalizer: PeriodNormalizer,
        *,
        clock: Callable[[], int] = now_ts,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.normalizer = normalizer
        self.clock = clock

    @property
    def creator_plan_key(self) -> str:
        return self.resolver.creator_plan_key

    def _live_for_other(self, existing: Optional[EntitlementRecord], subscription_id: str, now: int) -> bool:
        if existing is None or not existing.processor_subscription_id:
            return False
        if existing.processor_subscription_id == subscription_id:
            return False
        if existing.status == "expired":
            return False
        return has_access(map_status(existing.provider_status or existing.status), existing.period_end, now)

    def reconcile_fan_subscription(
        self,
        subscription: Dict[str, Any],
        *,
        tenant_account_id: Optional[str] = None,
        fetched: bool = False,
    ) -> Optional[SubscriptionRecord]:
        """Converge the fan -> creator record for ``subscription``.

        Returns ``None`` without writing when the creator or the fan cannot be
        resolved yet. Raises ``PeriodUnavailable`` when an activated
        subscription has no derivable period end; nothing is written then either.
        A record already marked deleted is returned as stored.
        """
        sub_id = safe_str(subscription.get("id"))
        if not sub_id:
            logger.info("subscription object without id; nothing to reconcile")
            return None

        stored = self.store.get_fan_subscription(sub_id)
        if stored is not None and stored.deleted_at:
            logger.info(f"subscription {sub_id}: deleted at {stored.deleted_at}; ignoring late update")
            return stored

        creator = self.resolver.resolve_creator(subscription, tenant_account_id)
        if creator is None:
            logger.info(f"subscription {sub_id}: creator not resolvable on {tenant_account_id or 'platform'}; skipping")
            return None
        customer_id = customer_id_of(subscription)
        fan_id = self.resolver.resolve_fan(subscription, customer_id)
        if not fan_id:
            logger.info(f"subscription {sub_id}: fan not resolvable (customer {customer_id}); skipping")
            return None

        period = self.normalizer.normalize(subscription, tenant_account_id=tenant_account_id, fetched=fetched)
        sub = period.subscription or subscription
        provider_status = safe_str(sub.get("status")).lower() or "incomplete"
        mapped = map_status(provider_status)
        start, end = (None, None) if mapped in PRE_ACTIVATION else (period.start, period.end)

        now = self.clock()
        status = effective_status(mapped, end, now)
        record = SubscriptionRecord(
            fan_id=fan_id,
            creator_id=creator.creator_id,
            plan_id=creator.plan_id,
            status=status,
            mapped_status=mapped,
            provider_status=provider_status,
            is_active=status == "active",
            cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
            processor_customer_id=customer_id_of(sub) or customer_id,
            processor_subscription_id=sub_id,
            tenant_account_id=tenant_account_id,
            period_start=start,
            period_end=end,
            canceled_at=to_epoch(sub.get("canceled_at")),
            updated_at=now,
        )
        self.store.put_fan_subscription(record)

        existing = self.store.get_entitlement(fan_id, FAN_ENTITLEMENT_KEY, creator.creator_id)
        if self._live_for_other(existing, sub_id, now) and not record.is_active:
            logger.info(
                f"subscription {sub_id}: entitlement for {fan_id}->{creator.creator_id} held by live "
                f"subscription {existing.processor_subscription_id}; leaving it"
            )
            return record
        self.store.put_entitlement(EntitlementRecord(
            user_id=fan_id,
            key=FAN_ENTITLEMENT_KEY,
            creator_id=creator.creator_id,
            status=status,
            provider_status=provider_status,
            is_active=record.is_active,
            cancel_at_period_end=record.cancel_at_period_end,
            processor_customer_id=record.processor_customer_id,
            processor_subscription_id=sub_id,
            period_start=start,
            period_end=end,
            updated_at=now,
        ))
        return record

    def reconcile_platform_entitlement(
        self,
        subscription: Dict[str, Any],
        user_id: str,
        *,
        tenant_account_id: Optional[str] = None,
        fetched: bool = False,
    ) -> Optional[EntitlementRecord]:
        sub_id = safe_str(subscription.get("id"))
        if not sub_id or not user_id:
            return None

        existing = self.store.get_entitlement(user_id, self.creator_plan_key)
        if existing is not None and existing.status == "expired" and existing.processor_subscription_id == sub_id:
            logger.info(f"subscription {sub_id}: {self.creator_plan_key} for {user_id} already expired; ignoring late update")
            return existing

        period = self.normalizer.normalize(subscription, tenant_account_id=tenant_account_id, fetched=fetched)
        sub = period.subscription or subscription
        provider_status = safe_str(sub.get("status")).lower() or "incomplete"
        now = self.clock()
        status = effective_status(map_platform_status(provider_status), period.end, now)

        if self._live_for_other(existing, sub_id, now) and status != "active":
            logger.info(
                f"subscription {sub_id}: {self.creator_plan_key} for {user_id} held by live "
                f"subscription {existing.processor_subscription_id}; leaving it"
            )
            return existing

        record = EntitlementRecord(
            user_id=user_id,
            key=self.creator_plan_key,
            status=status,
            provider_status=provider_status,
            is_active=status == "active",
            cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
            processor_customer_id=customer_id_of(sub),
            processor_subscription_id=sub_id,
            period_start=period.start,
            period_end=period.end,
            updated_at=now,
        )
        self.store.put_entitlement(record)
        self.store.put_subscription_ref(sub_id, user_id, self.creator_plan_key)
        return record

    def expire_platform_entitlement(
        self,
        user_id: str,
        subscription_id: str,
        subscription: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Mark the platform entitlement owned by ``subscription_id`` as expired.

        When no row exists yet (the deletion overtook the creation) an expired
        row is written instead, so a late update for the same subscription
        finds it and leaves it alone. A row owned by another subscription is
        never touched.
        """
        sub = subscription or {}
        provider_status = safe_str(sub.get("status")).lower() or "canceled"
        now = self.clock()
        existing = self.store.get_entitlement(user_id, self.creator_plan_key)
        if existing is None:
            logger.info(f"no {self.creator_plan_key} entitlement for {user_id}; recording {subscription_id} as expired")
            self.store.put_entitlement(EntitlementRecord(
                user_id=user_id,
                key=self.creator_plan_key,
                status="expired",
                provider_status=provider_status,
                is_active=False,
                processor_customer_id=customer_id_of(sub),
                processor_subscription_id=subscription_id,
                updated_at=now,
            ))
            self.store.put_subscription_ref(subscription_id, user_id, self.creator_plan_key)
            return True
        if existing.processor_subscription_id and existing.processor_subscription_id != subscription_id:
            logger.info(
                f"{self.creator_plan_key} for {user_id} now belongs to {existing.processor_subscription_id}; "
                f"ignoring deletion of {subscription_id}"
            )
            return False
        self.store.expire_entitlement(user_id, self.creator_plan_key, now, provider_status)
        return True

    def delete_fan_subscription(
        self,
        subscription_id: str,
        subscription: Optional[Dict[str, Any]] = None,
        *,
        tenant_account_id: Optional[str] = None,
    ) -> bool:
        """Logically delete a fan subscription.

        The record stays as a canceled row with ``deleted_at`` set, which
        ``reconcile_fan_subscription`` treats as final. The fan entitlement is
        removed when this subscription owns it. Without a stored record the
        identity is resolved from the deletion payload; returns ``False`` when
        that fails too.
        """
        sub = subscription or {}
        record = self.store.get_fan_subscription(subscription_id)
        if record is not None:
            fan_id, creator_id, plan_id = record.fan_id, record.creator_id, record.plan_id
            customer_id = record.processor_customer_id
            tenant = record.tenant_account_id or tenant_account_id
        else:
            creator = self.resolver.resolve_creator(sub, tenant_account_id)
            customer_id = customer_id_of(sub)
            fan_id = self.resolver.resolve_fan(sub, customer_id) if creator else None
            if creator is None or not fan_id:
                logger.info(f"subscription {subscription_id}: nothing stored and identity not resolvable")
                return False
            creator_id, plan_id = creator.creator_id, creator.plan_id
            tenant = tenant_account_id

        ent = self.store.get_entitlement(fan_id, FAN_ENTITLEMENT_KEY, creator_id)
        if ent is not None and ent.processor_subscription_id in (None, subscription_id):
            self.store.delete_entitlement(fan_id, FAN_ENTITLEMENT_KEY, creator_id)

        # the deletion payload is Stripe's final word on the period
        start, end = direct_period(sub)
        if end is None:
            start, end = (record.period_start, record.period_end) if record is not None else (None, None)
        elif start is None or end <= start:
            start = end - self.normalizer.repair_seconds

        now = self.clock()
        self.store.put_fan_subscription(SubscriptionRecord(
            fan_id=fan_id,
            creator_id=creator_id,
            plan_id=plan_id,
            status="canceled",
            mapped_status="canceled",
            provider_status=safe_str(sub.get("status")).lower() or "canceled",
            is_active=False,
            cancel_at_period_end=False,
            processor_customer_id=customer_id_of(sub) or customer_id,
            processor_subscription_id=subscription_id,
            tenant_account_id=tenant,
            period_start=start,
            period_end=end,
            canceled_at=to_epoch(sub.get("canceled_at")) or (record.canceled_at if record else None),
            deleted_at=(record.deleted_at if record else None) or now,
            updated_at=now,
        ))
        return True

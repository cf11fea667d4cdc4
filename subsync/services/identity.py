from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from subsync.services.store import SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreatorRef:
    creator_id: str
    plan_id: Optional[str] = None


def safe_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def metadata_of(obj: Dict[str, Any]) -> Dict[str, Any]:
    md = obj.get("metadata")
    return md if isinstance(md, dict) else {}


def customer_id_of(obj: Dict[str, Any]) -> Optional[str]:
    cust = obj.get("customer")
    if isinstance(cust, dict):
        cust = cust.get("id")
    return safe_str(cust) or None


def first_item(obj: Dict[str, Any]) -> Dict[str, Any]:
    items = obj.get("items")
    data = items.get("data") if isinstance(items, dict) else None
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return {}


def price_id_of(obj: Dict[str, Any]) -> Optional[str]:
    price = first_item(obj).get("price")
    if isinstance(price, dict):
        price = price.get("id")
    return safe_str(price) or None


class IdentityResolver:
    def __init__(self, store: SubscriptionStore, *, creator_plan_key: str = "creator_plan") -> None:
        self.store = store
        self.creator_plan_key = creator_plan_key

    def is_creator_plan(self, subscription: Dict[str, Any]) -> bool:
        return safe_str(metadata_of(subscription).get("key")) == self.creator_plan_key

    def resolve_creator(self, subscription: Dict[str, Any], tenant_account_id: Optional[str]) -> Optional[CreatorRef]:
        md = metadata_of(subscription)
        creator_id = safe_str(md.get("creator_id"))
        plan_id = safe_str(md.get("plan_id")) or None
        if creator_id and plan_id:
            return CreatorRef(creator_id, plan_id)

        # price ids are only unique within one connected account
        mapping = None
        price_id = price_id_of(subscription)
        if price_id and tenant_account_id:
            mapping = self.store.lookup_tenant_price(tenant_account_id, price_id)

        if creator_id:
            if mapping and safe_str(mapping.get("creator_id")) not in ("", creator_id):
                logger.warning(
                    f"subscription {subscription.get('id')}: metadata creator {creator_id} "
                    f"disagrees with price mapping on {tenant_account_id}; keeping metadata"
                )
                mapping = None
            return CreatorRef(creator_id, plan_id or (safe_str((mapping or {}).get("plan_id")) or None))

        if not mapping:
            return None
        mapped_creator = safe_str(mapping.get("creator_id"))
        if not mapped_creator:
            return None
        return CreatorRef(mapped_creator, safe_str(mapping.get("plan_id")) or None)

    def resolve_fan(self, subscription: Dict[str, Any], customer_id: Optional[str]) -> Optional[str]:
        fan_id = safe_str(metadata_of(subscription).get("fan_id"))
        if fan_id:
            return fan_id
        if not customer_id:
            return None
        return self.store.lookup_customer(customer_id)

    def resolve_platform_user(self, subscription: Dict[str, Any], subscription_id: Optional[str]) -> Optional[str]:
        if self.is_creator_plan(subscription):
            user_id = safe_str(metadata_of(subscription).get("user_id"))
            if user_id:
                return user_id
        if not subscription_id:
            return None
        return self.store.find_entitlement_owner(subscription_id, self.creator_plan_key)

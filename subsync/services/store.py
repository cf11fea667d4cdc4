from __future__ import annotations

from typing import Any, Dict, Optional

from subsync.core.tables import Tables
from subsync.core.time import iso_from_ts
from subsync.models import EntitlementRecord, SubscriptionRecord

SUBSCRIPTION_SK = "SUBSCRIPTION"
SUBREF_SK = "ENTITLEMENT"
FAN_ENTITLEMENT_KEY = "subscription"


def pk_subscription(subscription_id: str) -> str:
    return f"SUB#{subscription_id}"


def pk_user(user_id: str) -> str:
    return f"USER#{user_id}"


def pk_subref(subscription_id: str) -> str:
    return f"SUBREF#{subscription_id}"


def pk_account(account_id: str) -> str:
    return f"ACCOUNT#{account_id}"


def pk_customer(customer_id: str) -> str:
    return f"CUSTOMER#{customer_id}"


def sk_entitlement(key: str, creator_id: Optional[str] = None) -> str:
    if creator_id:
        return f"ENT#{key}#{creator_id}"
    return f"ENT#{key}"


def ddb_get(table: Any, pk: str, sk: str) -> Optional[Dict[str, Any]]:
    resp = table.get_item(Key={"pk": pk, "sk": sk})
    return resp.get("Item")


def ddb_put(table: Any, item: Dict[str, Any]) -> None:
    table.put_item(Item=item)


def ddb_del(table: Any, pk: str, sk: str) -> None:
    table.delete_item(Key={"pk": pk, "sk": sk})


def ddb_update(
    table: Any,
    pk: str,
    sk: str,
    expr: str,
    values: Dict[str, Any],
    names: Optional[Dict[str, str]] = None,
) -> None:
    kwargs: Dict[str, Any] = {
        "Key": {"pk": pk, "sk": sk},
        "UpdateExpression": expr,
        "ExpressionAttributeValues": values,
    }
    if names:
        kwargs["ExpressionAttributeNames"] = names
    table.update_item(**kwargs)


def _with_iso(item: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    for field in fields:
        item[f"{field}_iso"] = iso_from_ts(item.get(field))
    return item


class SubscriptionStore:
    """DynamoDB gateway. Writes are full-row ``put_item`` replaces keyed by the idempotency key."""

    def __init__(self, tables: Tables) -> None:
        self.tables = tables

    # fan -> creator subscriptions

    def get_fan_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        item = ddb_get(self.tables.subscriptions, pk_subscription(subscription_id), SUBSCRIPTION_SK)
        if not item:
            return None
        return SubscriptionRecord.model_validate(item)

    def put_fan_subscription(self, record: SubscriptionRecord) -> None:
        item = {
            "pk": pk_subscription(record.processor_subscription_id),
            "sk": SUBSCRIPTION_SK,
            **record.model_dump(),
        }
        ddb_put(self.tables.subscriptions, _with_iso(
            item, "period_start", "period_end", "canceled_at", "deleted_at", "updated_at"
        ))

    # entitlements

    def get_entitlement(self, user_id: str, key: str, creator_id: Optional[str] = None) -> Optional[EntitlementRecord]:
        item = ddb_get(self.tables.entitlements, pk_user(user_id), sk_entitlement(key, creator_id))
        if not item:
            return None
        return EntitlementRecord.model_validate(item)

    def put_entitlement(self, record: EntitlementRecord) -> None:
        item = {
            "pk": pk_user(record.user_id),
            "sk": sk_entitlement(record.key, record.creator_id),
            **record.model_dump(),
        }
        ddb_put(self.tables.entitlements, _with_iso(item, "period_start", "period_end", "updated_at"))

    def delete_entitlement(self, user_id: str, key: str, creator_id: Optional[str] = None) -> None:
        ddb_del(self.tables.entitlements, pk_user(user_id), sk_entitlement(key, creator_id))

    def expire_entitlement(self, user_id: str, key: str, updated_at: int, provider_status: str = "canceled") -> None:
        ddb_update(
            self.tables.entitlements,
            pk_user(user_id),
            sk_entitlement(key),
            "SET #st = :st, #ps = :ps, #act = :act, #pe = :pe, #pei = :pe, #cpe = :cpe, #u = :u, #ui = :ui",
            {
                ":st": "expired",
                ":ps": provider_status,
                ":act": False,
                ":pe": None,
                ":cpe": False,
                ":u": updated_at,
                ":ui": iso_from_ts(updated_at),
            },
            names={
                "#st": "status",
                "#ps": "provider_status",
                "#act": "is_active",
                "#pe": "period_end",
                "#pei": "period_end_iso",
                "#cpe": "cancel_at_period_end",
                "#u": "updated_at",
                "#ui": "updated_at_iso",
            },
        )

    def put_subscription_ref(self, subscription_id: str, user_id: str, key: str) -> None:
        ddb_put(self.tables.entitlements, {
            "pk": pk_subref(subscription_id),
            "sk": SUBREF_SK,
            "user_id": user_id,
            "key": key,
        })

    def find_entitlement_owner(self, subscription_id: str, key: str) -> Optional[str]:
        item = ddb_get(self.tables.entitlements, pk_subref(subscription_id), SUBREF_SK)
        if not item or item.get("key") != key:
            return None
        return item.get("user_id") or None

    # read-only mappings maintained by provisioning

    def lookup_tenant_price(self, account_id: str, price_id: str) -> Optional[Dict[str, Any]]:
        return ddb_get(self.tables.tenant_prices, pk_account(account_id), f"PRICE#{price_id}")

    def lookup_customer(self, customer_id: str) -> Optional[str]:
        item = ddb_get(self.tables.profiles, pk_customer(customer_id), "PROFILE")
        if not item:
            return None
        return item.get("user_id") or None

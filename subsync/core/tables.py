from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .aws import ddb
from .settings import S


@dataclass(frozen=True)
class Tables:
    subscriptions: Any
    entitlements: Any
    tenant_prices: Any
    profiles: Any


T = Tables(
    subscriptions=ddb.Table(S.subscriptions_table_name),
    entitlements=ddb.Table(S.entitlements_table_name),
    tenant_prices=ddb.Table(S.tenant_prices_table_name),
    profiles=ddb.Table(S.profiles_table_name),
)

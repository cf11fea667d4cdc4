from __future__ import annotations

import os
from dataclasses import dataclass


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) not in ("0", "false", "False", "")


@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # DynamoDB tables
    subscriptions_table_name: str = os.environ.get("SUBSCRIPTIONS_TABLE_NAME", "fan_subscriptions")
    entitlements_table_name: str = os.environ.get("ENTITLEMENTS_TABLE_NAME", "entitlements")
    tenant_prices_table_name: str = os.environ.get("TENANT_PRICES_TABLE_NAME", "creator_plan_prices")
    profiles_table_name: str = os.environ.get("PROFILES_TABLE_NAME", "profiles")

    # Stripe
    stripe_secret_key: str = os.environ.get("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    stripe_api_version: str = os.environ.get("STRIPE_API_VERSION", "")
    stripe_max_network_retries: int = int(os.environ.get("STRIPE_MAX_NETWORK_RETRIES", "2"))
    # 0 disables the timestamp window
    stripe_webhook_tolerance_seconds: int = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "0"))
    stripe_refetch_subscriptions: bool = _flag("STRIPE_REFETCH_SUBSCRIPTIONS", "1")

    # Reconciliation
    period_repair_seconds: int = int(os.environ.get("PERIOD_REPAIR_SECONDS", "60"))
    creator_plan_key: str = os.environ.get("CREATOR_PLAN_KEY", "creator_plan")

    # HTTP
    cors_allow_origins: str = os.environ.get("CORS_ALLOW_ORIGINS", "*")
    metrics_enabled: bool = _flag("METRICS_ENABLED", "1")
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()


S = Settings()

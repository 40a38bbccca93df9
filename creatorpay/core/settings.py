from __future__ import annotations

import os
from dataclasses import dataclass


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) not in ("0", "false", "False")


@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # DynamoDB
    ledger_table_name: str = os.environ.get("LEDGER_TABLE_NAME", "creator_ledger")
    ddb_ttl_attr: str = os.environ.get("DDB_TTL_ATTR", "ttl_epoch")

    # Stripe
    stripe_secret_key: str = os.environ.get("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    stripe_default_currency: str = os.environ.get("STRIPE_DEFAULT_CURRENCY", "usd").lower()
    stripe_timeout_seconds: int = int(os.environ.get("STRIPE_TIMEOUT_SECONDS", "20"))
    stripe_connect_country: str = os.environ.get("STRIPE_CONNECT_COUNTRY", "US")
    public_base_url: str = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

    # Revenue
    platform_commission_bps: int = int(os.environ.get("PLATFORM_COMMISSION_BPS", "2000"))
    min_payout_cents: int = int(os.environ.get("MIN_PAYOUT_CENTS", "100"))
    min_tip_cents: int = int(os.environ.get("MIN_TIP_CENTS", "100"))
    payout_reserve_retries: int = int(os.environ.get("PAYOUT_RESERVE_RETRIES", "3"))

    # Webhooks
    processed_event_ttl_seconds: int = int(os.environ.get("PROCESSED_EVENT_TTL_SECONDS", str(7 * 24 * 3600)))

    # Observability
    audit_log_enabled: bool = _flag("AUDIT_LOG_ENABLED", "1")
    metrics_enabled: bool = _flag("METRICS_ENABLED", "1")

    # Operators allowed to read reconciliation alerts
    ops_user_ids: str = os.environ.get("OPS_USER_IDS", "")

    def ops_users(self) -> frozenset:
        return frozenset(u.strip() for u in self.ops_user_ids.split(",") if u.strip())


S = Settings()

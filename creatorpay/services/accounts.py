from __future__ import annotations

from typing import Any, Dict, Optional

from creatorpay.core.ledger import (
    cond_exists,
    creator_pk,
    ddb_get,
    ddb_put,
    put_if_absent,
    stripe_account_pk,
    update_if,
)
from creatorpay.core.settings import S
from creatorpay.core.time import now_ts
from creatorpay.services import gateway


def get_account(creator_id: str) -> Optional[Dict[str, Any]]:
    return ddb_get(creator_pk(creator_id), "ACCOUNT")


def ensure_account(creator_id: str, *, subscription_price_cents: Optional[int] = None) -> Dict[str, Any]:
    existing = get_account(creator_id)
    if existing:
        return existing
    ts = now_ts()
    item = {
        "pk": creator_pk(creator_id),
        "sk": "ACCOUNT",
        "creator_id": creator_id,
        "commission_bps": S.platform_commission_bps,
        "stripe_account_id": None,
        "onboarding_complete": False,
        "charges_enabled": False,
        "payouts_enabled": False,
        "is_active": True,
        "subscription_price_cents": subscription_price_cents,
        "created_at": ts,
        "updated_at": ts,
    }
    if put_if_absent(item):
        return item
    return get_account(creator_id) or item


def creator_for_stripe_account(account_id: str) -> Optional[str]:
    ref = ddb_get(stripe_account_pk(account_id), "REF")
    return ref.get("creator_id") if ref else None


def connect_account(creator_id: str, email: Optional[str] = None) -> Dict[str, Any]:
    """Create (once) the creator's Express account used as payout destination."""
    account = ensure_account(creator_id)
    if account.get("stripe_account_id"):
        return account
    created = gateway.create_connect_account(creator_id, email)
    ddb_put({"pk": stripe_account_pk(created["id"]), "sk": "REF", "creator_id": creator_id, "created_at": now_ts()})
    update_if(
        creator_pk(creator_id),
        "ACCOUNT",
        cond_exists(),
        sets={"stripe_account_id": created["id"], "updated_at": now_ts()},
    )
    return get_account(creator_id) or account


def onboarding_link(creator_id: str) -> Dict[str, Any]:
    account = get_account(creator_id)
    if not account or not account.get("stripe_account_id"):
        account = connect_account(creator_id)
    acct = account["stripe_account_id"]
    return gateway.create_account_link(
        acct,
        return_url=f"{S.public_base_url}/return/{acct}",
        refresh_url=f"{S.public_base_url}/refresh/{acct}",
    )


def connect_status_fields(charges_enabled: bool, payouts_enabled: bool, details_submitted: bool) -> Dict[str, Any]:
    sets: Dict[str, Any] = {
        "charges_enabled": bool(charges_enabled),
        "payouts_enabled": bool(payouts_enabled),
        "details_submitted": bool(details_submitted),
        "updated_at": now_ts(),
    }
    if charges_enabled and payouts_enabled:
        sets["onboarding_complete"] = True
    return sets


def refresh_account_status(creator_id: str) -> Optional[Dict[str, Any]]:
    """Pull the live Connect flags from the provider and store them on the account row."""
    account = get_account(creator_id)
    if not account or not account.get("stripe_account_id"):
        return None
    live = gateway.retrieve_account(account["stripe_account_id"])
    update_if(
        creator_pk(creator_id),
        "ACCOUNT",
        cond_exists(),
        sets=connect_status_fields(live["charges_enabled"], live["payouts_enabled"], live["details_submitted"]),
    )
    return get_account(creator_id)


def dashboard_login_link(creator_id: str) -> Optional[Dict[str, Any]]:
    account = get_account(creator_id)
    if not account or not account.get("stripe_account_id"):
        return None
    return gateway.create_login_link(account["stripe_account_id"])


def set_subscription_price(creator_id: str, price_cents: int) -> Dict[str, Any]:
    ensure_account(creator_id)
    update_if(
        creator_pk(creator_id),
        "ACCOUNT",
        cond_exists(),
        sets={"subscription_price_cents": int(price_cents), "updated_at": now_ts()},
    )
    return get_account(creator_id) or {}


def deactivate_account(creator_id: str) -> Optional[Dict[str, Any]]:
    # Financial history must stay addressable, so accounts are only switched off.
    if not update_if(
        creator_pk(creator_id),
        "ACCOUNT",
        cond_exists(),
        sets={"is_active": False, "deactivated_at": now_ts(), "updated_at": now_ts()},
    ):
        return None
    return get_account(creator_id)


def payout_ready(account: Optional[Dict[str, Any]]) -> bool:
    if not account:
        return False
    return bool(account.get("is_active", True) and account.get("stripe_account_id") and account.get("onboarding_complete"))

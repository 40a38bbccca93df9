from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from creatorpay.core.ledger import cond_all, cond_eq, cond_exists, ddb_put, purchase_pk, tip_pk, update_if
from creatorpay.core.normalize import normalize_email
from creatorpay.core.settings import S
from creatorpay.core.time import now_ts
from creatorpay.services import gateway
from creatorpay.services.access import has_active_subscription, has_unlock
from creatorpay.services.accounts import get_account
from creatorpay.services.audit import audit_event
from creatorpay.services.content import get_content_item


class CheckoutError(Exception):
    def __init__(self, code: str, message: str, status_code: int = 400):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


def _mark_failed(pk: str, reason: str) -> None:
    update_if(
        pk,
        "META",
        cond_all(cond_exists(), cond_eq("status", "pending")),
        sets={"status": "failed", "failure_reason": reason, "updated_at": now_ts()},
    )


def _payable_creator(creator_id: str) -> Dict[str, Any]:
    account = get_account(creator_id)
    if not account or not account.get("is_active", True):
        raise CheckoutError("creator_not_found", "Creator not found", 404)
    return account


def start_purchase(fan_id: str, content_id: str, email: Optional[str] = None, request=None) -> Dict[str, Any]:
    item = get_content_item(content_id)
    if not item or not item.is_published:
        raise CheckoutError("not_found", "Post not found", 404)
    if not item.is_premium or item.price_cents <= 0:
        raise CheckoutError("not_premium", "This post is not premium content")
    if item.creator_id == fan_id:
        raise CheckoutError("own_content", "You cannot purchase your own content")
    if has_unlock(fan_id, content_id):
        raise CheckoutError("already_purchased", "You have already purchased this content")
    _payable_creator(item.creator_id)

    purchase_id = new_id("pur")
    ts = now_ts()
    ddb_put({
        "pk": purchase_pk(purchase_id),
        "sk": "META",
        "purchase_id": purchase_id,
        "fan_id": fan_id,
        "creator_id": item.creator_id,
        "content_id": content_id,
        "gross_cents": item.price_cents,
        "currency": S.stripe_default_currency,
        "status": "pending",
        "created_at": ts,
        "updated_at": ts,
    })
    try:
        session = gateway.create_checkout_session(
            mode="payment",
            name=item.title or "Premium post",
            description=item.description,
            unit_amount_cents=item.price_cents,
            metadata={
                "type": "premium_post",
                "purchase_id": purchase_id,
                "fan_id": fan_id,
                "creator_id": item.creator_id,
                "content_id": content_id,
            },
            success_url=f"{S.public_base_url}/posts/{content_id}?purchase=success",
            cancel_url=f"{S.public_base_url}/posts/{content_id}?purchase=canceled",
            customer_email=normalize_email(email),
            idempotency_key=f"purchase:{purchase_id}",
        )
    except gateway.GatewayTimeout as exc:
        audit_event("purchase_checkout_unknown", fan_id, request, severity="warning",
                    purchase_id=purchase_id, content_id=content_id, reason=str(exc))
        raise CheckoutError("gateway", f"Payment provider error: {exc}", 502) from exc
    except gateway.GatewayError as exc:
        _mark_failed(purchase_pk(purchase_id), str(exc))
        audit_event("purchase_checkout_failed", fan_id, request, severity="error",
                    purchase_id=purchase_id, content_id=content_id, reason=str(exc))
        raise CheckoutError("gateway", f"Payment provider error: {exc}", 502) from exc

    audit_event("purchase_checkout_started", fan_id, request, purchase_id=purchase_id,
                content_id=content_id, session_id=session["id"])
    return {"purchase_id": purchase_id, "session_id": session["id"], "checkout_url": session["url"]}


def start_tip(
    fan_id: str,
    creator_id: str,
    amount_cents: int,
    *,
    message: Optional[str] = None,
    conversation_id: Optional[str] = None,
    email: Optional[str] = None,
    request=None,
) -> Dict[str, Any]:
    amount = int(amount_cents)
    if amount < S.min_tip_cents:
        raise CheckoutError("below_minimum", f"Minimum tip amount is {_dollars(S.min_tip_cents)}")
    if creator_id == fan_id:
        raise CheckoutError("own_account", "You cannot tip yourself")
    _payable_creator(creator_id)

    tip_id = new_id("tip")
    ts = now_ts()
    ddb_put({
        "pk": tip_pk(tip_id),
        "sk": "META",
        "tip_id": tip_id,
        "fan_id": fan_id,
        "creator_id": creator_id,
        "conversation_id": conversation_id,
        "message": message,
        "gross_cents": amount,
        "currency": S.stripe_default_currency,
        "status": "pending",
        "created_at": ts,
        "updated_at": ts,
    })
    return_path = f"/messages/{conversation_id}" if conversation_id else f"/creators/{creator_id}"
    try:
        session = gateway.create_checkout_session(
            mode="payment",
            name="Tip",
            description=message,
            unit_amount_cents=amount,
            metadata={"type": "tip", "tip_id": tip_id, "fan_id": fan_id, "creator_id": creator_id},
            success_url=f"{S.public_base_url}{return_path}?tip=success",
            cancel_url=f"{S.public_base_url}{return_path}?tip=canceled",
            customer_email=normalize_email(email),
            idempotency_key=f"tip:{tip_id}",
        )
    except gateway.GatewayTimeout as exc:
        audit_event("tip_checkout_unknown", fan_id, request, severity="warning", tip_id=tip_id, reason=str(exc))
        raise CheckoutError("gateway", f"Payment provider error: {exc}", 502) from exc
    except gateway.GatewayError as exc:
        _mark_failed(tip_pk(tip_id), str(exc))
        audit_event("tip_checkout_failed", fan_id, request, severity="error", tip_id=tip_id, reason=str(exc))
        raise CheckoutError("gateway", f"Payment provider error: {exc}", 502) from exc

    audit_event("tip_checkout_started", fan_id, request, tip_id=tip_id, creator_id=creator_id,
                amount_cents=amount, session_id=session["id"])
    return {"tip_id": tip_id, "session_id": session["id"], "checkout_url": session["url"]}


def start_subscription(fan_id: str, creator_id: str, email: Optional[str] = None, request=None) -> Dict[str, Any]:
    if creator_id == fan_id:
        raise CheckoutError("own_account", "You cannot subscribe to yourself")
    account = _payable_creator(creator_id)
    price = int(account.get("subscription_price_cents") or 0)
    if price <= 0:
        raise CheckoutError("no_price", "This creator has not set a subscription price")
    if has_active_subscription(fan_id, creator_id):
        raise CheckoutError("already_subscribed", "You are already subscribed to this creator")

    try:
        session = gateway.create_checkout_session(
            mode="subscription",
            name="Creator subscription",
            description=None,
            unit_amount_cents=price,
            metadata={"type": "subscription", "fan_id": fan_id, "creator_id": creator_id},
            success_url=f"{S.public_base_url}/creators/{creator_id}?subscription=success",
            cancel_url=f"{S.public_base_url}/creators/{creator_id}?subscription=canceled",
            customer_email=normalize_email(email),
            recurring_interval="month",
        )
    except gateway.GatewayError as exc:
        audit_event("subscription_checkout_failed", fan_id, request, severity="error",
                    creator_id=creator_id, reason=str(exc))
        raise CheckoutError("gateway", f"Payment provider error: {exc}", 502) from exc

    audit_event("subscription_checkout_started", fan_id, request, creator_id=creator_id, session_id=session["id"])
    return {"session_id": session["id"], "checkout_url": session["url"]}

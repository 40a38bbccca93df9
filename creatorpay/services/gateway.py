from __future__ import annotations

import json
from typing import Any, Dict, Optional

import stripe

from creatorpay.core.settings import S


class GatewayError(Exception):
    """The provider refused or failed the call; nothing was executed."""


class GatewayTimeout(GatewayError):
    """The call may or may not have been executed by the provider."""


class GatewayNotConfigured(GatewayError):
    pass


class SignatureError(Exception):
    pass


def ensure_stripe_configured() -> None:
    if not S.stripe_secret_key:
        raise GatewayNotConfigured("Stripe is not configured")
    stripe.api_key = S.stripe_secret_key
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.RequestsClient(timeout=S.stripe_timeout_seconds)


def verify_event(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """Check the Stripe-Signature header and decode the event body."""
    if not S.stripe_webhook_secret:
        raise SignatureError("webhook secret not configured")
    if not sig_header:
        raise SignatureError("missing signature header")
    text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
    try:
        stripe.WebhookSignature.verify_header(text, sig_header, S.stripe_webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE)
    except Exception as exc:
        raise SignatureError(str(exc)) from exc
    return json.loads(text)


def _call(fn, **kwargs: Any) -> Any:
    ensure_stripe_configured()
    try:
        return fn(**kwargs)
    except stripe.APIConnectionError as exc:
        raise GatewayTimeout(exc.user_message or str(exc)) from exc
    except stripe.StripeError as exc:
        raise GatewayError(exc.user_message or str(exc)) from exc


def create_checkout_session(
    *,
    mode: str,
    name: str,
    description: Optional[str],
    unit_amount_cents: int,
    metadata: Dict[str, str],
    success_url: str,
    cancel_url: str,
    customer_email: Optional[str] = None,
    recurring_interval: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> Dict[str, Any]:
    price_data: Dict[str, Any] = {
        "currency": S.stripe_default_currency,
        "unit_amount": int(unit_amount_cents),
        "product_data": {"name": name, **({"description": description} if description else {})},
    }
    params: Dict[str, Any] = {
        "mode": mode,
        "line_items": [{"quantity": 1, "price_data": price_data}],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
    }
    if mode == "subscription":
        price_data["recurring"] = {"interval": recurring_interval or "month"}
        params["subscription_data"] = {"metadata": metadata}
    else:
        params["payment_intent_data"] = {"metadata": metadata}
    if customer_email:
        params["customer_email"] = customer_email
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    session = _call(stripe.checkout.Session.create, **params)
    return {"id": session["id"], "url": session["url"]}


def create_transfer(
    *,
    amount_cents: int,
    destination: str,
    metadata: Dict[str, str],
    idempotency_key: str,
) -> Dict[str, Any]:
    transfer = _call(
        stripe.Transfer.create,
        amount=int(amount_cents),
        currency=S.stripe_default_currency,
        destination=destination,
        metadata=metadata,
        idempotency_key=idempotency_key,
    )
    return {"id": transfer["id"], "amount": transfer.get("amount")}


def create_connect_account(creator_id: str, email: Optional[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "type": "express",
        "country": S.stripe_connect_country,
        "capabilities": {"card_payments": {"requested": True}, "transfers": {"requested": True}},
        "metadata": {"creator_id": creator_id},
        "idempotency_key": f"connect:{creator_id}",
    }
    if email:
        params["email"] = email
    account = _call(stripe.Account.create, **params)
    return {"id": account["id"]}


def create_account_link(account_id: str, return_url: str, refresh_url: str) -> Dict[str, Any]:
    link = _call(
        stripe.AccountLink.create,
        account=account_id,
        return_url=return_url,
        refresh_url=refresh_url,
        type="account_onboarding",
    )
    return {"url": link["url"], "expires_at": link.get("expires_at")}


def create_login_link(account_id: str) -> Dict[str, Any]:
    link = _call(stripe.Account.create_login_link, account=account_id)
    return {"url": link["url"]}


def retrieve_account(account_id: str) -> Dict[str, Any]:
    account = _call(stripe.Account.retrieve, id=account_id)
    return {
        "id": account["id"],
        "charges_enabled": bool(account.get("charges_enabled")),
        "payouts_enabled": bool(account.get("payouts_enabled")),
        "details_submitted": bool(account.get("details_submitted")),
        "email": account.get("email"),
    }

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request

from creatorpay.auth.deps import require_user
from creatorpay.models import ConnectReq, PayoutReq, SubscriptionPriceReq
from creatorpay.services import accounts, gateway
from creatorpay.services.earnings import earnings_breakdown
from creatorpay.services.payouts import PayoutError, payout_summary, request_payout

router = APIRouter(tags=["creator"])


def _public_account(account: Dict[str, Any]) -> Dict[str, Any]:
    keys = (
        "creator_id",
        "stripe_account_id",
        "onboarding_complete",
        "charges_enabled",
        "payouts_enabled",
        "details_submitted",
        "is_active",
        "commission_bps",
        "subscription_price_cents",
        "created_at",
        "updated_at",
    )
    return {k: account.get(k) for k in keys}


@router.get("/api/creator/payouts")
def get_payouts(x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    return payout_summary(creator_id)


@router.post("/api/creator/payouts")
def create_payout(
    req: Request,
    body: Optional[PayoutReq] = None,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    try:
        payout = request_payout(creator_id, body.amount_cents if body else None, request=req)
    except PayoutError as exc:
        raise HTTPException(400, exc.message) from exc
    return {
        "payout_id": payout["payout_id"],
        "amount_cents": int(payout["amount_cents"]),
        "status": payout["status"],
        "transfer_id": payout.get("transfer_id"),
    }


@router.get("/api/creator/earnings")
def get_earnings(
    since: Optional[int] = Query(default=None, ge=0),
    until: Optional[int] = Query(default=None, ge=0),
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    return earnings_breakdown(creator_id, since=since, until=until)


@router.get("/api/creator/account")
def get_account(x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    account = accounts.get_account(creator_id)
    if not account:
        raise HTTPException(404, "Creator account not found")
    return _public_account(account)


@router.post("/api/creator/connect")
def connect(body: Optional[ConnectReq] = None, x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    try:
        account = accounts.connect_account(creator_id, body.email if body else None)
    except gateway.GatewayError as exc:
        raise HTTPException(502, f"Payment provider error: {exc}") from exc
    return _public_account(account)


@router.post("/api/creator/account-link")
def account_link(x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    try:
        return accounts.onboarding_link(creator_id)
    except gateway.GatewayError as exc:
        raise HTTPException(502, f"Payment provider error: {exc}") from exc


@router.get("/api/creator/account/status")
def account_status(x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    try:
        account = accounts.refresh_account_status(creator_id)
    except gateway.GatewayError as exc:
        raise HTTPException(502, f"Payment provider error: {exc}") from exc
    if not account:
        raise HTTPException(404, "Stripe account not connected")
    return _public_account(account)


@router.post("/api/creator/login-link")
def login_link(x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    try:
        link = accounts.dashboard_login_link(creator_id)
    except gateway.GatewayError as exc:
        raise HTTPException(502, f"Payment provider error: {exc}") from exc
    if not link:
        raise HTTPException(404, "Stripe account not connected")
    return link


@router.put("/api/creator/subscription-price")
def put_subscription_price(body: SubscriptionPriceReq, x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    return _public_account(accounts.set_subscription_price(creator_id, body.price_cents))


@router.post("/api/creator/account/deactivate")
def deactivate(x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    account = accounts.deactivate_account(creator_id)
    if not account:
        raise HTTPException(404, "Creator account not found")
    return _public_account(account)

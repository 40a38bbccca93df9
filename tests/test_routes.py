from __future__ import annotations

import asyncio
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from creatorpay.main import create_app
from creatorpay.models import ContentCreateReq, PayoutReq, TipReq
from creatorpay.routers import checkout as checkout_routes
from creatorpay.routers import content as content_routes
from creatorpay.routers import creator as creator_routes
from creatorpay.routers import misc, ops, webhooks
from creatorpay.services import gateway
from fakes import checkout_obj, sign, stripe_event

CREATOR = "creator-1"


def run_async(coro):
    return asyncio.run(coro)


def build_request(*, method: str = "POST", body: bytes = b"", headers: Dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "scheme": "http",
        "server": ("testserver", 80),
        "client": ("127.0.0.1", 5000),
    }

    async def receive() -> Dict[str, Any]:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


def _account(ledger, **kw):
    item = {"pk": f"CREATOR#{CREATOR}", "sk": "ACCOUNT", "creator_id": CREATOR, "is_active": True, "commission_bps": 2000}
    item.update(kw)
    ledger.seed(item)


def test_ping() -> None:
    assert run_async(misc.ping()) == {"ok": True}


def test_app_registers_routes() -> None:
    paths = {r.path for r in create_app().routes}
    for path in (
        "/api/webhooks/stripe",
        "/api/content/{content_id}/purchase",
        "/api/messages/tip",
        "/api/creators/{creator_id}/subscribe",
        "/api/creators/{creator_id}/posts",
        "/api/creator/payouts",
        "/api/creator/earnings",
        "/api/creator/account/status",
        "/api/creator/login-link",
        "/api/ops/reconciliation",
    ):
        assert path in paths


def test_webhook_route_acknowledges(ledger, stripe_settings) -> None:
    body = stripe_event("customer.created", {"id": "cus_1"})
    resp = run_async(webhooks.stripe_webhook(build_request(body=body, headers={"Stripe-Signature": sign(body)})))
    assert resp["received"] is True
    assert resp["outcome"] == "ignored"


def test_webhook_route_rejects_bad_signature(ledger, stripe_settings) -> None:
    body = stripe_event("customer.created", {"id": "cus_1"})
    with pytest.raises(HTTPException) as exc:
        run_async(webhooks.stripe_webhook(build_request(body=body, headers={"Stripe-Signature": "t=1,v1=bad"})))
    assert exc.value.status_code == 400


def test_webhook_route_unattributed_is_still_200(ledger, stripe_settings) -> None:
    meta = {"type": "premium_post", "purchase_id": "pur_x"}
    body = stripe_event("checkout.session.completed", checkout_obj("cs_1", meta, amount=500))
    resp = run_async(webhooks.stripe_webhook(build_request(body=body, headers={"Stripe-Signature": sign(body)})))
    assert resp["outcome"] == "unattributed"


def test_payout_route_errors_are_400(ledger) -> None:
    _account(ledger, stripe_account_id="acct_1", onboarding_complete=True)
    with pytest.raises(HTTPException) as exc:
        creator_routes.create_payout(build_request(), body=PayoutReq(), x_user_id=CREATOR)
    assert exc.value.status_code == 400
    assert exc.value.detail == "No funds available for payout"


def test_payout_route_setup_message(ledger) -> None:
    _account(ledger)
    with pytest.raises(HTTPException) as exc:
        creator_routes.create_payout(build_request(), body=None, x_user_id=CREATOR)
    assert "onboarding" in exc.value.detail


def test_payout_route_transfer_failure(ledger, monkeypatch) -> None:
    _account(ledger, stripe_account_id="acct_1", onboarding_complete=True)
    ledger.seed({"pk": f"CREATOR#{CREATOR}", "sk": "BALANCE", "earned_cents": 1000, "committed_cents": 0,
                 "paid_cents": 0, "gross_cents": 1250, "commission_cents": 250})
    monkeypatch.setattr(gateway, "create_transfer", MagicMock(side_effect=gateway.GatewayError("Destination account is restricted")))
    with pytest.raises(HTTPException) as exc:
        creator_routes.create_payout(build_request(), body=PayoutReq(amount_cents=500), x_user_id=CREATOR)
    assert exc.value.detail == "Destination account is restricted"


def test_account_status_route_refreshes_flags(ledger, monkeypatch) -> None:
    _account(ledger, stripe_account_id="acct_1", onboarding_complete=False)
    live = {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True, "details_submitted": True, "email": None}
    monkeypatch.setattr(gateway, "retrieve_account", MagicMock(return_value=live))
    resp = creator_routes.account_status(x_user_id=CREATOR)
    assert (resp["charges_enabled"], resp["payouts_enabled"], resp["details_submitted"]) == (True, True, True)
    assert ledger.get(f"CREATOR#{CREATOR}", "ACCOUNT")["onboarding_complete"] is True


def test_login_link_route(ledger, monkeypatch) -> None:
    create = MagicMock(return_value={"url": "https://connect.stripe.test/express/login"})
    monkeypatch.setattr(gateway, "create_login_link", create)
    _account(ledger)
    with pytest.raises(HTTPException) as exc:
        creator_routes.login_link(x_user_id=CREATOR)
    assert exc.value.status_code == 404

    _account(ledger, stripe_account_id="acct_1")
    assert creator_routes.login_link(x_user_id=CREATOR)["url"].endswith("/express/login")
    create.assert_called_once_with("acct_1")


def test_payout_route_requires_identity(ledger) -> None:
    with pytest.raises(HTTPException) as exc:
        creator_routes.get_payouts(x_user_id=None)
    assert exc.value.status_code == 401


def test_tip_route_gateway_failure_is_502(ledger, monkeypatch) -> None:
    _account(ledger)
    monkeypatch.setattr(gateway, "create_checkout_session", MagicMock(side_effect=gateway.GatewayError("Stripe is not configured")))
    with pytest.raises(HTTPException) as exc:
        checkout_routes.send_tip(TipReq(creator_id=CREATOR, amount_cents=500), build_request(), x_user_id="fan-1")
    assert exc.value.status_code == 502
    assert "Stripe is not configured" in exc.value.detail


def test_posts_route_overlays_access(ledger) -> None:
    content_routes.create_content(
        ContentCreateReq(content_id="cnt_p", title="Paid", media_url="https://cdn/p.jpg", is_premium=True, price_cents=700),
        x_user_id=CREATOR,
    )
    content_routes.create_content(
        ContentCreateReq(content_id="cnt_d", title="Draft", media_url="https://cdn/d.jpg", is_published=False),
        x_user_id=CREATOR,
    )

    fan_view = content_routes.list_posts(CREATOR, x_user_id="fan-1")
    assert [p["content_id"] for p in fan_view["posts"]] == ["cnt_p"]
    post = fan_view["posts"][0]
    assert (post["can_view"], post["should_blur"], post["media_url"]) == (False, True, None)
    assert post["price_to_unlock_cents"] == 700

    owner_view = content_routes.list_posts(CREATOR, x_user_id=CREATOR)
    assert {p["content_id"] for p in owner_view["posts"]} == {"cnt_p", "cnt_d"}
    assert all(p["can_view"] for p in owner_view["posts"])


def test_content_of_another_creator_cannot_be_overwritten(ledger) -> None:
    content_routes.create_content(ContentCreateReq(content_id="cnt_1", media_url="https://cdn/1.jpg"), x_user_id=CREATOR)
    with pytest.raises(HTTPException) as exc:
        content_routes.create_content(ContentCreateReq(content_id="cnt_1", media_url="https://cdn/evil.jpg"), x_user_id="creator-2")
    assert exc.value.status_code == 403


def test_premium_content_needs_price(ledger) -> None:
    with pytest.raises(HTTPException) as exc:
        content_routes.create_content(ContentCreateReq(media_url="https://cdn/1.jpg", is_premium=True), x_user_id=CREATOR)
    assert exc.value.status_code == 400


def test_ops_route_requires_operator(ledger, stripe_settings) -> None:
    with pytest.raises(HTTPException) as exc:
        ops.require_ops_user(x_user_id="fan-1")
    assert exc.value.status_code == 403
    assert ops.require_ops_user(x_user_id="ops-1") == "ops-1"


def test_ops_route_lists_open_alerts(ledger, stripe_settings) -> None:
    meta = {"type": "tip", "tip_id": "tip_missing"}
    body = stripe_event("checkout.session.completed", checkout_obj("cs_1", meta, amount=500))
    run_async(webhooks.stripe_webhook(build_request(body=body, headers={"Stripe-Signature": sign(body)})))
    resp = ops.reconciliation_alerts(status="open", limit=10, _ops="ops-1")
    assert [a["kind"] for a in resp["alerts"]] == ["tip_unattributed"]

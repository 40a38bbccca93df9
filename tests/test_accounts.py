from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from creatorpay.services import accounts, gateway


@pytest.fixture
def stripe_calls(monkeypatch):
    create = MagicMock(return_value={"id": "acct_9"})
    link = MagicMock(return_value={"url": "https://connect.stripe.test/onboard", "expires_at": 1})
    monkeypatch.setattr(gateway, "create_connect_account", create)
    monkeypatch.setattr(gateway, "create_account_link", link)
    return create, link


def test_ensure_account_defaults(ledger) -> None:
    acct = accounts.ensure_account("c1")
    assert acct["commission_bps"] == 2000
    assert acct["onboarding_complete"] is False
    assert accounts.payout_ready(acct) is False
    assert accounts.ensure_account("c1")["created_at"] == acct["created_at"]


def test_connect_account_is_created_once(ledger, stripe_calls) -> None:
    create, _ = stripe_calls
    acct = accounts.connect_account("c1", "c1@example.com")
    assert acct["stripe_account_id"] == "acct_9"
    assert accounts.creator_for_stripe_account("acct_9") == "c1"
    accounts.connect_account("c1")
    assert create.call_count == 1


def test_onboarding_link_urls(ledger, stripe_calls) -> None:
    _, link = stripe_calls
    out = accounts.onboarding_link("c1")
    assert out["url"].startswith("https://connect.stripe.test")
    args, kwargs = link.call_args
    assert args[0] == "acct_9"
    assert kwargs["return_url"].endswith("/return/acct_9")
    assert kwargs["refresh_url"].endswith("/refresh/acct_9")


def test_deactivate_keeps_row(ledger) -> None:
    accounts.ensure_account("c1")
    acct = accounts.deactivate_account("c1")
    assert acct["is_active"] is False
    assert ledger.get("CREATOR#c1", "ACCOUNT") is not None
    assert accounts.deactivate_account("missing") is None


def test_payout_ready() -> None:
    assert accounts.payout_ready({"is_active": True, "stripe_account_id": "acct_1", "onboarding_complete": True})
    assert not accounts.payout_ready({"is_active": False, "stripe_account_id": "acct_1", "onboarding_complete": True})
    assert not accounts.payout_ready(None)


def test_refresh_status_requires_connected_account(ledger, monkeypatch) -> None:
    retrieve = MagicMock()
    monkeypatch.setattr(gateway, "retrieve_account", retrieve)
    accounts.ensure_account("c1")
    assert accounts.refresh_account_status("c1") is None
    assert accounts.dashboard_login_link("c1") is None
    retrieve.assert_not_called()


def test_refresh_status_partial_flags_keep_onboarding_open(ledger, stripe_calls, monkeypatch) -> None:
    accounts.connect_account("c1")
    live = {"id": "acct_9", "charges_enabled": True, "payouts_enabled": False, "details_submitted": True, "email": None}
    monkeypatch.setattr(gateway, "retrieve_account", MagicMock(return_value=live))
    acct = accounts.refresh_account_status("c1")
    assert (acct["charges_enabled"], acct["payouts_enabled"], acct["onboarding_complete"]) == (True, False, False)

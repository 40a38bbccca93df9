from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from creatorpay.core.ledger import (
    BAL_FIELDS,
    available_cents,
    cond_absent,
    cond_eq,
    cond_exists,
    cond_all,
    cond_in,
    creator_pk,
    ddb_get,
    ddb_query_prefix,
    ensure_balance_row,
    payout_sk,
    transact,
    tx_balance_delta,
    tx_put,
    tx_update,
    update_if,
)
from creatorpay.core.settings import S
from creatorpay.core.time import now_ts
from creatorpay.metrics import record_payout_request
from creatorpay.services import gateway
from creatorpay.services.accounts import get_account, payout_ready
from creatorpay.services.audit import audit_event

COMMITTED_STATUSES = ("pending", "processing", "paid")

MESSAGES = {
    "setup_incomplete": "Stripe Connect account not set up. Please complete onboarding first.",
    "no_funds": "No funds available for payout",
    "exceeds_available": "Payout amount exceeds available balance",
    "conflict": "Balance changed while reserving the payout, please retry",
}


class PayoutError(Exception):
    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        self.message = message or MESSAGES.get(code, code)
        super().__init__(self.message)


def _money(cents: int) -> str:
    return f"${cents / 100:.2f}"


def list_payouts(creator_id: str) -> List[Dict[str, Any]]:
    items = ddb_query_prefix(creator_pk(creator_id), "PAYOUT#")
    items.sort(key=lambda x: x.get("requested_at", 0), reverse=True)
    return items


def get_payout(creator_id: str, payout_id: str) -> Optional[Dict[str, Any]]:
    return ddb_get(creator_pk(creator_id), payout_sk(payout_id))


def _reserve(creator_id: str, account: Dict[str, Any], amount_cents: Optional[int]) -> Dict[str, Any]:
    for _ in range(max(1, S.payout_reserve_retries)):
        bal = ensure_balance_row(creator_id)
        available = available_cents(bal)
        if available <= 0:
            raise PayoutError("no_funds")
        amount = available if amount_cents is None else int(amount_cents)
        if amount > available:
            raise PayoutError("exceeds_available")
        if amount < S.min_payout_cents:
            raise PayoutError("below_minimum", f"Minimum payout amount is {_money(S.min_payout_cents)}")

        ts = now_ts()
        payout_id = f"po_{uuid.uuid4().hex}"
        payout = {
            "pk": creator_pk(creator_id),
            "sk": payout_sk(payout_id),
            "payout_id": payout_id,
            "creator_id": creator_id,
            "amount_cents": amount,
            "currency": bal.get("currency") or S.stripe_default_currency,
            "status": "pending",
            "destination": account["stripe_account_id"],
            "transfer_id": None,
            "requested_at": ts,
            "updated_at": ts,
        }
        seen = int(bal.get("committed_cents", 0))
        # Conditioned on committed_cents only; earned_cents never decreases.
        if transact([
            tx_put(payout, cond_absent()),
            tx_balance_delta(creator_id, {"committed_cents": amount}, condition=cond_eq("committed_cents", seen)),
        ]):
            return payout
    raise PayoutError("conflict")


def _release_failed(payout: Dict[str, Any], reason: str) -> None:
    ts = now_ts()
    ok = transact([
        tx_update(
            payout["pk"],
            payout["sk"],
            sets={"status": "failed", "failure_reason": reason, "updated_at": ts},
            condition=cond_in("status", ("pending", "processing")),
        ),
        tx_balance_delta(payout["creator_id"], {"committed_cents": -int(payout["amount_cents"])}),
    ])
    if not ok:
        audit_event("payout_release_skipped", payout["creator_id"], severity="warning",
                    payout_id=payout["payout_id"], reason=reason)


def request_payout(creator_id: str, amount_cents: Optional[int] = None, request=None) -> Dict[str, Any]:
    """Reserve funds for a payout and ask the provider to transfer them.

    Returns the payout row. A transfer whose outcome is unknown leaves the
    payout ``processing`` until a transfer event settles it.
    """
    account = get_account(creator_id)
    if not payout_ready(account):
        record_payout_request("setup_incomplete")
        raise PayoutError("setup_incomplete")

    try:
        payout = _reserve(creator_id, account, amount_cents)
    except PayoutError as exc:
        record_payout_request(exc.code)
        audit_event("payout_rejected", creator_id, request, code=exc.code, amount_cents=amount_cents)
        raise

    payout_id = payout["payout_id"]
    amount = int(payout["amount_cents"])
    # The row reads processing before the transfer is issued.
    update_if(
        payout["pk"],
        payout["sk"],
        cond_all(cond_exists(), cond_eq("status", "pending")),
        sets={"status": "processing", "updated_at": now_ts()},
    )
    try:
        transfer = gateway.create_transfer(
            amount_cents=amount,
            destination=account["stripe_account_id"],
            metadata={"creator_id": creator_id, "payout_id": payout_id, "type": "creator_payout"},
            idempotency_key=payout_id,
        )
    except gateway.GatewayTimeout as exc:
        record_payout_request("unknown")
        audit_event("payout_transfer_unknown", creator_id, request, severity="warning",
                    payout_id=payout_id, amount_cents=amount, reason=str(exc))
        return get_payout(creator_id, payout_id) or payout
    except gateway.GatewayError as exc:
        _release_failed(payout, str(exc))
        record_payout_request("transfer_failed")
        audit_event("payout_transfer_failed", creator_id, request, severity="error",
                    payout_id=payout_id, amount_cents=amount, reason=str(exc))
        raise PayoutError("transfer_failed", str(exc)) from exc

    # A transfer event may already have moved the row on; leave it if so.
    update_if(
        payout["pk"],
        payout["sk"],
        cond_all(cond_exists(), cond_eq("status", "processing")),
        sets={"transfer_id": transfer["id"], "updated_at": now_ts()},
    )
    record_payout_request("processing")
    audit_event("payout_requested", creator_id, request, payout_id=payout_id,
                amount_cents=amount, transfer_id=transfer["id"])
    return get_payout(creator_id, payout_id) or payout


def recompute_balance(creator_id: str) -> Dict[str, int]:
    """Derive the balance figures from earning lines and payout rows."""
    totals = {k: 0 for k in BAL_FIELDS}
    for line in ddb_query_prefix(creator_pk(creator_id), "EARNING#"):
        totals["gross_cents"] += int(line.get("gross_cents", 0))
        totals["commission_cents"] += int(line.get("commission_cents", 0))
        totals["earned_cents"] += int(line.get("creator_net_cents", 0))
    for p in list_payouts(creator_id):
        status = p.get("status")
        if status in COMMITTED_STATUSES:
            totals["committed_cents"] += int(p.get("amount_cents", 0))
        if status == "paid":
            totals["paid_cents"] += int(p.get("amount_cents", 0))
    totals["available_cents"] = totals["earned_cents"] - totals["committed_cents"]
    return totals


def balance_drift(creator_id: str) -> Dict[str, int]:
    """Differences between the running balance row and the derived figures."""
    row = ddb_get(creator_pk(creator_id), "BALANCE") or {}
    derived = recompute_balance(creator_id)
    return {k: int(row.get(k, 0)) - derived[k] for k in BAL_FIELDS if int(row.get(k, 0)) != derived[k]}


def payout_summary(creator_id: str) -> Dict[str, Any]:
    bal = ddb_get(creator_pk(creator_id), "BALANCE") or {}
    payouts = list_payouts(creator_id)
    pending = sum(int(p["amount_cents"]) for p in payouts if p.get("status") in ("pending", "processing"))
    return {
        "total_revenue_cents": int(bal.get("gross_cents", 0)),
        "total_earnings_cents": int(bal.get("earned_cents", 0)),
        "available_cents": available_cents(bal),
        "pending_cents": pending,
        "paid_cents": int(bal.get("paid_cents", 0)),
        "payouts": [
            {
                "payout_id": p.get("payout_id"),
                "amount_cents": int(p.get("amount_cents", 0)),
                "status": p.get("status"),
                "transfer_id": p.get("transfer_id"),
                "requested_at": p.get("requested_at"),
                "paid_at": p.get("paid_at"),
                "failure_reason": p.get("failure_reason"),
            }
            for p in payouts
        ],
    }

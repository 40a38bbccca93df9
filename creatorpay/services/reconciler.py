"""Apply verified Stripe events to the revenue ledger.

``handle`` is the only entry point. Each event kind has one applier that
reads what it needs, then commits all of its effects (financial row,
idempotency guard, earning line, balance change) in a single transaction.
A refused transaction is re-read: if the guard is now present the delivery
was a duplicate, otherwise the row moved underneath us and the event is
retried by the provider.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from creatorpay.core.ledger import (
    agreement_pk,
    cond_absent,
    cond_all,
    cond_eq,
    cond_exists,
    cond_in,
    creator_pk,
    ddb_get,
    ddb_put,
    ddb_query_prefix,
    earning_sk,
    fan_pk,
    invoice_pk,
    payment_intent_pk,
    payout_sk,
    purchase_pk,
    stripe_account_pk,
    subscription_sk,
    tip_pk,
    transact,
    tx_balance_delta,
    tx_put,
    tx_update,
    unlock_sk,
    update_if,
)
from creatorpay.core.settings import S
from creatorpay.core.time import now_ts
from creatorpay.metrics import record_webhook_event
from creatorpay.services import gateway
from creatorpay.services.accounts import connect_status_fields, creator_for_stripe_account, get_account
from creatorpay.services.audit import audit_event, raise_reconciliation_alert
from creatorpay.services.events import (
    AccountUpdated,
    CheckoutCompleted,
    CheckoutExpired,
    EventParseError,
    InvoicePaid,
    ProviderEvent,
    SubscriptionChanged,
    SubscriptionDeleted,
    TransferChanged,
    parse_event,
)
from creatorpay.services.splitter import Split, split_for_account

PROCESSED_PK = "PROVIDER_EVENT"

STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "unpaid",
    "incomplete": "unpaid",
    "paused": "unpaid",
    "canceled": "canceled",
    "incomplete_expired": "canceled",
}

PURCHASE_PURPOSES = ("purchase", "premium_post")


class LedgerConflict(RuntimeError):
    """A concurrent writer changed the rows an event depends on."""


@dataclass(frozen=True)
class WebhookResult:
    ack: bool
    outcome: str
    reason: str = ""
    event_id: Optional[str] = None
    kind: Optional[str] = None


def _ok(outcome: str, reason: str = "") -> WebhookResult:
    return WebhookResult(ack=True, outcome=outcome, reason=reason)


def _unattributed(alert: str, ev: ProviderEvent, **refs: Any) -> WebhookResult:
    raise_reconciliation_alert(alert, event_id=ev.event_id, event_type=ev.event_type, **refs)
    return _ok("unattributed", alert)


# -----------------------------
# Processed-event marker
# -----------------------------

def already_processed(event_id: str) -> bool:
    return ddb_get(PROCESSED_PK, event_id) is not None


def mark_processed(ev: ProviderEvent, outcome: str) -> None:
    ts = now_ts()
    ddb_put({
        "pk": PROCESSED_PK,
        "sk": ev.event_id,
        "event_type": ev.event_type,
        "outcome": outcome,
        "processed_at": ts,
        S.ddb_ttl_attr: ts + S.processed_event_ttl_seconds,
    })


# -----------------------------
# Shared row builders
# -----------------------------

def _earning_line(creator_id: str, kind: str, source_id: str, money: Split, currency: Optional[str]) -> Dict[str, Any]:
    return {
        "pk": creator_pk(creator_id),
        "sk": earning_sk(kind, source_id),
        "creator_id": creator_id,
        "kind": kind,
        "source_id": source_id,
        **money.as_item(),
        "currency": (currency or S.stripe_default_currency).lower(),
        "created_at": now_ts(),
    }


def _earning_delta(money: Split) -> Dict[str, int]:
    return {
        "gross_cents": money.gross_cents,
        "commission_cents": money.commission_cents,
        "earned_cents": money.creator_net_cents,
    }


def _resolve_parties(agreement_id: str, fan_id: Optional[str], creator_id: Optional[str]) -> Dict[str, Optional[str]]:
    ref = ddb_get(agreement_pk(agreement_id), "REF") or {}
    return {
        "fan_id": ref.get("fan_id") or fan_id,
        "creator_id": ref.get("creator_id") or creator_id,
    }


def _agreement_ref(agreement_id: str, fan_id: str, creator_id: str) -> Dict[str, Any]:
    return {
        "pk": agreement_pk(agreement_id),
        "sk": "REF",
        "agreement_id": agreement_id,
        "fan_id": fan_id,
        "creator_id": creator_id,
    }


def _version_cond(row: Optional[Dict[str, Any]]):
    if row is None:
        return cond_absent()
    return cond_all(cond_exists(), cond_eq("version", int(row.get("version") or 0)))


# -----------------------------
# Subscriptions
# -----------------------------

def apply_subscription_changed(ev: SubscriptionChanged) -> WebhookResult:
    status = STATUS_MAP.get(ev.provider_status)
    if status is None:
        audit_event("subscription_status_unmapped", None, severity="warning",
                    agreement_id=ev.agreement_id, provider_status=ev.provider_status)
        return _ok("ignored", "unmapped_status")

    parties = _resolve_parties(ev.agreement_id, ev.fan_id, ev.creator_id)
    fan_id, creator_id = parties["fan_id"], parties["creator_id"]
    if not fan_id or not creator_id:
        return _unattributed("subscription_unattributed", ev, agreement_id=ev.agreement_id)

    key_pk, key_sk = fan_pk(fan_id), subscription_sk(creator_id, ev.agreement_id)
    existing = ddb_get(key_pk, key_sk)
    if existing:
        if existing.get("status") == "canceled":
            audit_event("subscription_event_after_cancel", fan_id, severity="info",
                        agreement_id=ev.agreement_id, event_id=ev.event_id, provider_status=ev.provider_status)
            return _ok("ignored", "terminal")
        if ev.created < int(existing.get("last_event_at") or 0):
            return _ok("ignored", "stale")

    ts = now_ts()
    sets: Dict[str, Any] = {
        "fan_id": fan_id,
        "creator_id": creator_id,
        "agreement_id": ev.agreement_id,
        "status": status,
        "provider_status": ev.provider_status,
        "current_period_start": ev.current_period_start,
        "current_period_end": ev.current_period_end,
        "cancel_at_period_end": ev.cancel_at_period_end,
        "last_event_at": ev.created,
        "updated_at": ts,
    }
    if status == "canceled":
        sets["canceled_at"] = ts
    if not existing:
        sets["created_at"] = ts

    ops: List[Dict[str, Any]] = [
        tx_update(key_pk, key_sk, sets=sets, deltas={"version": 1}, condition=_version_cond(existing)),
        tx_put(_agreement_ref(ev.agreement_id, fan_id, creator_id)),
    ]

    superseded: List[str] = []
    newer: List[str] = []
    if status == "active":
        for other in ddb_query_prefix(key_pk, f"SUB#{creator_id}#"):
            if other.get("agreement_id") == ev.agreement_id or other.get("status") == "canceled":
                continue
            # Only rows last seen before this event can be superseded by it.
            if int(other.get("last_event_at") or 0) > ev.created:
                newer.append(other["agreement_id"])
                continue
            superseded.append(other["agreement_id"])
            ops.append(tx_update(
                key_pk,
                other["sk"],
                sets={"status": "canceled", "superseded_by": ev.agreement_id, "canceled_at": ts, "updated_at": ts},
                deltas={"version": 1},
                condition=_version_cond(other),
            ))

    if not transact(ops):
        raise LedgerConflict(f"subscription {ev.agreement_id} changed concurrently")

    for agreement_id in superseded:
        raise_reconciliation_alert(
            "duplicate_subscription",
            event_id=ev.event_id,
            fan_id=fan_id,
            creator_id=creator_id,
            agreement_id=agreement_id,
            superseded_by=ev.agreement_id,
        )
    for agreement_id in newer:
        raise_reconciliation_alert(
            "duplicate_subscription",
            event_id=ev.event_id,
            fan_id=fan_id,
            creator_id=creator_id,
            agreement_id=ev.agreement_id,
            newer_agreement_id=agreement_id,
        )
    return _ok("applied", status)


def apply_subscription_deleted(ev: SubscriptionDeleted) -> WebhookResult:
    parties = _resolve_parties(ev.agreement_id, ev.fan_id, ev.creator_id)
    fan_id, creator_id = parties["fan_id"], parties["creator_id"]
    if not fan_id or not creator_id:
        audit_event("subscription_delete_unmatched", None, severity="warning",
                    agreement_id=ev.agreement_id, event_id=ev.event_id)
        return _ok("ignored", "no_subscription")

    key_pk, key_sk = fan_pk(fan_id), subscription_sk(creator_id, ev.agreement_id)
    existing = ddb_get(key_pk, key_sk)
    if existing and existing.get("status") == "canceled":
        return _ok("duplicate", "already_canceled")

    ts = now_ts()
    sets: Dict[str, Any] = {
        "fan_id": fan_id,
        "creator_id": creator_id,
        "agreement_id": ev.agreement_id,
        "status": "canceled",
        "provider_status": "canceled",
        "canceled_at": ev.ended_at or ts,
        "last_event_at": max(ev.created, int((existing or {}).get("last_event_at") or 0)),
        "updated_at": ts,
    }
    if not existing:
        # Canceled tombstone; later create/update events for this id are dropped.
        sets["created_at"] = ts
        audit_event("subscription_delete_before_create", fan_id, severity="info",
                    agreement_id=ev.agreement_id, creator_id=creator_id)

    ok = transact([
        tx_update(key_pk, key_sk, sets=sets, deltas={"version": 1}, condition=_version_cond(existing)),
        tx_put(_agreement_ref(ev.agreement_id, fan_id, creator_id)),
    ])
    if not ok:
        raise LedgerConflict(f"subscription {ev.agreement_id} changed concurrently")
    return _ok("applied", "canceled")


# -----------------------------
# Invoices
# -----------------------------

def apply_invoice_paid(ev: InvoicePaid) -> WebhookResult:
    if ev.amount_paid <= 0:
        return _ok("ignored", "zero_amount")
    guard_pk = invoice_pk(ev.invoice_id)
    if ddb_get(guard_pk, "PAYMENT"):
        return _ok("duplicate", "invoice_recorded")
    if not ev.agreement_id:
        return _unattributed("invoice_unattributed", ev, invoice_id=ev.invoice_id, amount_cents=ev.amount_paid)

    ref = ddb_get(agreement_pk(ev.agreement_id), "REF")
    if not ref:
        return _unattributed(
            "invoice_unattributed", ev,
            invoice_id=ev.invoice_id, agreement_id=ev.agreement_id, amount_cents=ev.amount_paid,
        )

    fan_id, creator_id = ref["fan_id"], ref["creator_id"]
    money = split_for_account(ev.amount_paid, get_account(creator_id))
    ts = now_ts()
    payment = {
        "pk": guard_pk,
        "sk": "PAYMENT",
        "invoice_id": ev.invoice_id,
        "agreement_id": ev.agreement_id,
        "fan_id": fan_id,
        "creator_id": creator_id,
        **money.as_item(),
        "currency": (ev.currency or S.stripe_default_currency).lower(),
        "period_start": ev.period_start,
        "period_end": ev.period_end,
        "status": "completed",
        "event_id": ev.event_id,
        "created_at": ts,
    }
    ok = transact([
        tx_put(payment, cond_absent()),
        tx_put(_earning_line(creator_id, "subscription", ev.invoice_id, money, ev.currency), cond_absent()),
        tx_balance_delta(creator_id, _earning_delta(money)),
    ])
    if not ok:
        if ddb_get(guard_pk, "PAYMENT"):
            return _ok("duplicate", "invoice_recorded")
        raise LedgerConflict(f"invoice {ev.invoice_id} could not be recorded")
    audit_event("subscription_payment_recorded", fan_id, creator_id=creator_id,
                invoice_id=ev.invoice_id, **money.as_item())
    return _ok("applied", "subscription_payment")


# -----------------------------
# One-time checkouts
# -----------------------------

def _checkout_target(ev) -> Optional[str]:
    if ev.purpose in PURCHASE_PURPOSES or (ev.purpose is None and ev.purchase_id):
        return "purchase"
    if ev.purpose == "tip" or (ev.purpose is None and ev.tip_id):
        return "tip"
    return None


def _complete_one_time(
    ev: CheckoutCompleted,
    *,
    kind: str,
    row_pk: str,
    source_id: str,
) -> WebhookResult:
    row = ddb_get(row_pk, "META")
    if not row:
        return _unattributed(f"{kind}_unattributed", ev, session_id=ev.session_id,
                             payment_intent_id=ev.payment_intent_id, source_id=source_id,
                             amount_cents=ev.amount_total)
    if row.get("status") == "completed":
        return _ok("duplicate", f"{kind}_completed")
    if row.get("status") != "pending":
        return _unattributed(f"{kind}_not_pending", ev, source_id=source_id, status=row.get("status"),
                             session_id=ev.session_id, amount_cents=ev.amount_total)

    ext_id = ev.payment_intent_id or ev.session_id
    guard_pk = payment_intent_pk(ext_id)
    if ddb_get(guard_pk, "REF"):
        return _ok("duplicate", "payment_recorded")

    creator_id = row["creator_id"]
    fan_id = row["fan_id"]
    gross = ev.amount_total if ev.amount_total is not None else int(row.get("gross_cents") or 0)
    money = split_for_account(gross, get_account(creator_id))
    ts = now_ts()

    ops: List[Dict[str, Any]] = [
        tx_update(
            row_pk,
            "META",
            sets={
                **money.as_item(),
                "status": "completed",
                "payment_intent_id": ext_id,
                "session_id": ev.session_id,
                "currency": (ev.currency or S.stripe_default_currency).lower(),
                "completed_at": ts,
                "updated_at": ts,
            },
            condition=cond_eq("status", "pending"),
        ),
        tx_put(
            {"pk": guard_pk, "sk": "REF", "kind": kind, "source_id": source_id, "creator_id": creator_id, "created_at": ts},
            cond_absent(),
        ),
        tx_put(_earning_line(creator_id, kind, source_id, money, ev.currency), cond_absent()),
        tx_balance_delta(creator_id, _earning_delta(money)),
    ]
    if kind == "purchase":
        ops.append(tx_put({
            "pk": fan_pk(fan_id),
            "sk": unlock_sk(row["content_id"]),
            "fan_id": fan_id,
            "content_id": row["content_id"],
            "creator_id": creator_id,
            "purchase_id": source_id,
            "granted_at": ts,
        }))

    if not transact(ops):
        current = ddb_get(row_pk, "META") or {}
        if current.get("status") == "completed" or ddb_get(guard_pk, "REF"):
            return _ok("duplicate", f"{kind}_completed")
        raise LedgerConflict(f"{kind} {source_id} changed concurrently")
    audit_event(f"{kind}_completed", fan_id, creator_id=creator_id, source_id=source_id, **money.as_item())
    return _ok("applied", kind)


def apply_checkout_completed(ev: CheckoutCompleted) -> WebhookResult:
    if ev.mode == "subscription":
        # Ledger effects arrive with the subscription and invoice events.
        return _ok("ignored", "subscription_checkout")
    if ev.payment_status != "paid":
        return _ok("ignored", "not_paid")
    target = _checkout_target(ev)
    if target == "purchase" and ev.purchase_id:
        return _complete_one_time(ev, kind="purchase", row_pk=purchase_pk(ev.purchase_id), source_id=ev.purchase_id)
    if target == "tip" and ev.tip_id:
        return _complete_one_time(ev, kind="tip", row_pk=tip_pk(ev.tip_id), source_id=ev.tip_id)
    return _unattributed("checkout_unattributed", ev, session_id=ev.session_id,
                         payment_intent_id=ev.payment_intent_id, amount_cents=ev.amount_total)


def apply_checkout_expired(ev: CheckoutExpired) -> WebhookResult:
    target = _checkout_target(ev)
    if target == "purchase" and ev.purchase_id:
        row_pk = purchase_pk(ev.purchase_id)
    elif target == "tip" and ev.tip_id:
        row_pk = tip_pk(ev.tip_id)
    else:
        return _ok("ignored", "no_pending_checkout")
    ok = update_if(
        row_pk,
        "META",
        cond_all(cond_exists(), cond_eq("status", "pending")),
        sets={"status": "failed", "failure_reason": "checkout_expired", "updated_at": now_ts()},
    )
    return _ok("applied", f"{target}_failed") if ok else _ok("ignored", "not_pending")


# -----------------------------
# Transfers
# -----------------------------

def apply_transfer(ev: TransferChanged) -> WebhookResult:
    if not ev.payout_id or not ev.creator_id:
        return _unattributed("transfer_unattributed", ev, transfer_id=ev.transfer_id, amount_cents=ev.amount)
    key_pk, key_sk = creator_pk(ev.creator_id), payout_sk(ev.payout_id)
    payout = ddb_get(key_pk, key_sk)
    if not payout:
        return _unattributed("transfer_unattributed", ev, transfer_id=ev.transfer_id,
                             payout_id=ev.payout_id, creator_id=ev.creator_id, amount_cents=ev.amount)

    status = payout.get("status")
    amount = int(payout["amount_cents"])
    ts = now_ts()

    if ev.kind == "transfer_created":
        if status != "pending" and not (status == "processing" and not payout.get("transfer_id")):
            return _ok("duplicate", f"payout_{status}")
        ok = update_if(
            key_pk,
            key_sk,
            cond_all(cond_exists(), cond_in("status", ("pending", "processing"))),
            sets={"status": "processing", "transfer_id": ev.transfer_id, "updated_at": ts},
        )
        if not ok:
            raise LedgerConflict(f"payout {ev.payout_id} changed concurrently")
        return _ok("applied", "processing")

    if ev.kind == "transfer_paid":
        if status == "paid":
            return _ok("duplicate", "payout_paid")
        if status not in ("pending", "processing"):
            return _unattributed("transfer_state_mismatch", ev, transfer_id=ev.transfer_id,
                                 payout_id=ev.payout_id, creator_id=ev.creator_id, status=status)
        ops = [
            tx_update(
                key_pk,
                key_sk,
                sets={"status": "paid", "transfer_id": ev.transfer_id, "paid_at": ts, "updated_at": ts},
                condition=cond_in("status", ("pending", "processing")),
            ),
            tx_balance_delta(ev.creator_id, {"paid_cents": amount}),
        ]
        if not transact(ops):
            raise LedgerConflict(f"payout {ev.payout_id} changed concurrently")
        audit_event("payout_paid", ev.creator_id, payout_id=ev.payout_id, amount_cents=amount)
        return _ok("applied", "paid")

    # transfer_failed
    if status in ("failed", "canceled"):
        return _ok("duplicate", f"payout_{status}")
    delta = {"committed_cents": -amount}
    if status == "paid":
        delta["paid_cents"] = -amount
    ops = [
        tx_update(
            key_pk,
            key_sk,
            sets={
                "status": "failed",
                "transfer_id": ev.transfer_id,
                "failure_reason": ev.failure_message or ev.event_type,
                "updated_at": ts,
            },
            condition=cond_eq("status", status),
        ),
        tx_balance_delta(ev.creator_id, delta),
    ]
    if not transact(ops):
        raise LedgerConflict(f"payout {ev.payout_id} changed concurrently")
    audit_event("payout_failed", ev.creator_id, severity="warning", payout_id=ev.payout_id,
                amount_cents=amount, reason=ev.failure_message)
    return _ok("applied", "failed")


# -----------------------------
# Connected accounts
# -----------------------------

def apply_account_updated(ev: AccountUpdated) -> WebhookResult:
    creator_id = creator_for_stripe_account(ev.account_id) or ev.creator_id
    if not creator_id:
        audit_event("connect_account_unknown", None, severity="warning", account_id=ev.account_id)
        return _ok("ignored", "unknown_account")
    sets = connect_status_fields(ev.charges_enabled, ev.payouts_enabled, ev.details_submitted)
    if not update_if(creator_pk(creator_id), "ACCOUNT", cond_exists(), sets=sets):
        audit_event("connect_account_missing_row", creator_id, severity="warning", account_id=ev.account_id)
        return _ok("ignored", "no_account_row")
    if not ddb_get(stripe_account_pk(ev.account_id), "REF"):
        ddb_put({"pk": stripe_account_pk(ev.account_id), "sk": "REF", "creator_id": creator_id, "created_at": now_ts()})
    return _ok("applied", "account")


APPLIERS: Dict[str, Callable[[Any], WebhookResult]] = {
    "checkout_completed": apply_checkout_completed,
    "checkout_expired": apply_checkout_expired,
    "subscription_created": apply_subscription_changed,
    "subscription_updated": apply_subscription_changed,
    "subscription_deleted": apply_subscription_deleted,
    "invoice_paid": apply_invoice_paid,
    "transfer_created": apply_transfer,
    "transfer_paid": apply_transfer,
    "transfer_failed": apply_transfer,
    "account_updated": apply_account_updated,
}


def handle(raw_body: bytes, signature: Optional[str]) -> WebhookResult:
    """Verify, de-duplicate and apply one webhook delivery.

    Store failures propagate so the provider redelivers; every effect is
    idempotent under redelivery.
    """
    try:
        raw = gateway.verify_event(raw_body, signature)
    except gateway.SignatureError as exc:
        audit_event("webhook_signature_rejected", None, severity="security", reason=str(exc))
        record_webhook_event("unverified", "rejected")
        return WebhookResult(ack=False, outcome="rejected", reason="invalid signature")
    except ValueError:
        record_webhook_event("unverified", "rejected")
        return WebhookResult(ack=False, outcome="rejected", reason="invalid payload")

    try:
        ev = parse_event(raw)
    except EventParseError as exc:
        event_id = raw.get("id") if isinstance(raw, dict) else None
        audit_event("webhook_malformed", None, severity="warning", reason=str(exc), event_id=event_id)
        record_webhook_event("malformed", "rejected")
        return WebhookResult(ack=False, outcome="rejected", reason=str(exc), event_id=event_id)

    if already_processed(ev.event_id):
        audit_event("webhook_duplicate", None, severity="debug", event_id=ev.event_id, event_type=ev.event_type)
        record_webhook_event(ev.kind, "duplicate")
        return WebhookResult(ack=True, outcome="duplicate", reason="event_seen", event_id=ev.event_id, kind=ev.kind)

    applier = APPLIERS.get(ev.kind)
    result = applier(ev) if applier else _ok("ignored", "unhandled_type")

    # Unattributed events stay unmarked so an operator can replay them.
    if result.outcome in ("applied", "duplicate", "ignored"):
        mark_processed(ev, result.outcome)
    if result.outcome == "duplicate":
        audit_event("webhook_duplicate", None, severity="debug", event_id=ev.event_id, reason=result.reason)
    record_webhook_event(ev.kind, result.outcome)
    return WebhookResult(ack=True, outcome=result.outcome, reason=result.reason, event_id=ev.event_id, kind=ev.kind)

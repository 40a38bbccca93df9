"""Typed view of Stripe webhook events.

Each provider event type the ledger reacts to maps to one variant carrying
only the fields that kind guarantees; the metadata bags attached at checkout
or transfer time are lifted into named optional fields.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError


class EventParseError(ValueError):
    pass


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    event_type: str
    created: int = 0


class CheckoutCompleted(_Event):
    kind: Literal["checkout_completed"] = "checkout_completed"
    session_id: str
    mode: str
    payment_status: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    purpose: Optional[str] = None
    purchase_id: Optional[str] = None
    tip_id: Optional[str] = None
    fan_id: Optional[str] = None
    creator_id: Optional[str] = None


class CheckoutExpired(_Event):
    kind: Literal["checkout_expired"] = "checkout_expired"
    session_id: str
    purpose: Optional[str] = None
    purchase_id: Optional[str] = None
    tip_id: Optional[str] = None


class SubscriptionChanged(_Event):
    kind: Literal["subscription_created", "subscription_updated"]
    agreement_id: str
    provider_status: str
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    fan_id: Optional[str] = None
    creator_id: Optional[str] = None


class SubscriptionDeleted(_Event):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    agreement_id: str
    ended_at: Optional[int] = None
    fan_id: Optional[str] = None
    creator_id: Optional[str] = None


class InvoicePaid(_Event):
    kind: Literal["invoice_paid"] = "invoice_paid"
    invoice_id: str
    agreement_id: Optional[str] = None
    amount_paid: int
    currency: Optional[str] = None
    period_start: Optional[int] = None
    period_end: Optional[int] = None


class TransferChanged(_Event):
    kind: Literal["transfer_created", "transfer_paid", "transfer_failed"]
    transfer_id: str
    amount: Optional[int] = None
    payout_id: Optional[str] = None
    creator_id: Optional[str] = None
    failure_message: Optional[str] = None


class AccountUpdated(_Event):
    kind: Literal["account_updated"] = "account_updated"
    account_id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    creator_id: Optional[str] = None


class UnknownEvent(_Event):
    kind: Literal["unknown"] = "unknown"


ProviderEvent = Union[
    CheckoutCompleted,
    CheckoutExpired,
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaid,
    TransferChanged,
    AccountUpdated,
    UnknownEvent,
]


def _metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    return obj.get("metadata") or {}


def _first_item(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    data = (obj.get(key) or {}).get("data") or []
    return data[0] if data else {}


def _checkout(base: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    md = _metadata(obj)
    pi = obj.get("payment_intent")
    if isinstance(pi, dict):
        pi = pi.get("id")
    fields = dict(
        session_id=obj.get("id"),
        purpose=md.get("type"),
        purchase_id=md.get("purchase_id"),
        tip_id=md.get("tip_id"),
    )
    if base["event_type"] == "checkout.session.expired":
        return CheckoutExpired(**base, **fields)
    return CheckoutCompleted(
        **base,
        **fields,
        mode=obj.get("mode") or "payment",
        payment_status=obj.get("payment_status"),
        payment_intent_id=pi,
        amount_total=obj.get("amount_total"),
        currency=obj.get("currency"),
        fan_id=md.get("fan_id"),
        creator_id=md.get("creator_id"),
    )


def _subscription(base: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    md = _metadata(obj)
    # Newer API versions report billing periods on the subscription item.
    item = _first_item(obj, "items")
    period_start = obj.get("current_period_start") or item.get("current_period_start")
    period_end = obj.get("current_period_end") or item.get("current_period_end")
    if base["event_type"] == "customer.subscription.deleted":
        return SubscriptionDeleted(
            **base,
            agreement_id=obj.get("id"),
            ended_at=obj.get("ended_at") or obj.get("canceled_at"),
            fan_id=md.get("fan_id"),
            creator_id=md.get("creator_id"),
        )
    kind = "subscription_created" if base["event_type"].endswith(".created") else "subscription_updated"
    return SubscriptionChanged(
        **base,
        kind=kind,
        agreement_id=obj.get("id"),
        provider_status=obj.get("status"),
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
        fan_id=md.get("fan_id"),
        creator_id=md.get("creator_id"),
    )


def _invoice(base: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    agreement = obj.get("subscription")
    if isinstance(agreement, dict):
        agreement = agreement.get("id")
    if not agreement:
        details = ((obj.get("parent") or {}).get("subscription_details") or {})
        agreement = details.get("subscription")
    period = _first_item(obj, "lines").get("period") or {}
    return InvoicePaid(
        **base,
        invoice_id=obj.get("id"),
        agreement_id=agreement,
        amount_paid=obj.get("amount_paid"),
        currency=obj.get("currency"),
        period_start=period.get("start") or obj.get("period_start"),
        period_end=period.get("end") or obj.get("period_end"),
    )


def _transfer(base: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    md = _metadata(obj)
    suffix = base["event_type"].split(".", 1)[1]
    kind = {"created": "transfer_created", "paid": "transfer_paid"}.get(suffix, "transfer_failed")
    return TransferChanged(
        **base,
        kind=kind,
        transfer_id=obj.get("id"),
        amount=obj.get("amount"),
        payout_id=md.get("payout_id"),
        creator_id=md.get("creator_id"),
        failure_message=obj.get("failure_message"),
    )


def _account(base: Dict[str, Any], obj: Dict[str, Any]) -> ProviderEvent:
    return AccountUpdated(
        **base,
        account_id=obj.get("id"),
        charges_enabled=bool(obj.get("charges_enabled", False)),
        payouts_enabled=bool(obj.get("payouts_enabled", False)),
        details_submitted=bool(obj.get("details_submitted", False)),
        creator_id=_metadata(obj).get("creator_id"),
    )


PARSERS: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], ProviderEvent]] = {
    "checkout.session.completed": _checkout,
    "checkout.session.expired": _checkout,
    "customer.subscription.created": _subscription,
    "customer.subscription.updated": _subscription,
    "customer.subscription.deleted": _subscription,
    "invoice.paid": _invoice,
    "invoice.payment_succeeded": _invoice,
    "transfer.created": _transfer,
    "transfer.paid": _transfer,
    "transfer.failed": _transfer,
    "transfer.reversed": _transfer,
    "account.updated": _account,
}


def parse_event(raw: Dict[str, Any]) -> ProviderEvent:
    if not isinstance(raw, dict):
        raise EventParseError("event payload must be an object")
    event_id = raw.get("id")
    event_type = raw.get("type")
    if not event_id or not event_type:
        raise EventParseError("event id and type are required")
    try:
        created = int(raw.get("created") or 0)
    except (TypeError, ValueError) as exc:
        raise EventParseError("event created timestamp must be an integer") from exc
    base = {"event_id": event_id, "event_type": event_type, "created": created}

    parser = PARSERS.get(event_type)
    if parser is None:
        return UnknownEvent(**base)

    obj = (raw.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        raise EventParseError(f"{event_type}: data.object missing")
    try:
        return parser(base, obj)
    except ValidationError as exc:
        raise EventParseError(f"{event_type}: {exc.errors()[0].get('msg', 'invalid payload')}") from exc

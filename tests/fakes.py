from __future__ import annotations

import copy
import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

_deserializer = TypeDeserializer()

WEBHOOK_SECRET = "whsec_test"


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _decode(wire: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {k: _plain(_deserializer.deserialize(v)) for k, v in (wire or {}).items()}


def _split_top_level(expr: str) -> List[str]:
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    for char in expr:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    if current:
        parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _conditional_error(op: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        op,
    )


class FakeLedger:
    """In-memory stand-in for the ledger table and its low-level client.

    Understands the condition and update grammar the ledger layer emits.
    """

    def __init__(self) -> None:
        self.items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.transact_calls = 0
        self.fail_next: Optional[str] = None
        self.conflict_next = 0

    # helpers -----------------------------------------------------------

    def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        return self.items.get((pk, sk))

    def seed(self, item: Dict[str, Any]) -> None:
        self.items[(item["pk"], item["sk"])] = copy.deepcopy(item)

    def rows(self, pk: str, prefix: str = "") -> List[Dict[str, Any]]:
        return [it for (p, s), it in sorted(self.items.items()) if p == pk and s.startswith(prefix)]

    def _check(self, item: Optional[Dict[str, Any]], expr: Optional[str], names: Dict[str, str], values: Dict[str, Any]) -> bool:
        if not expr:
            return True
        for clause in expr.split(" AND "):
            clause = clause.strip()
            if clause == "attribute_not_exists(pk)":
                ok = item is None
            elif clause == "attribute_exists(pk)":
                ok = item is not None
            elif " IN (" in clause:
                left, rest = clause.split(" IN (", 1)
                keys = [k.strip() for k in rest.rstrip(")").split(",")]
                attr = names[left.strip()]
                ok = item is not None and attr in item and item[attr] in [values[k] for k in keys]
            else:
                left, right = clause.split(" = ", 1)
                attr = names[left.strip()]
                ok = item is not None and attr in item and item[attr] == values[right.strip()]
            if not ok:
                return False
        return True

    def _apply_update(self, item: Dict[str, Any], expr: str, names: Dict[str, str], values: Dict[str, Any]) -> None:
        assert expr.startswith("SET "), expr
        for assignment in _split_top_level(expr[4:]):
            left, right = assignment.split("=", 1)
            attr = names[left.strip()]
            right = right.strip()
            if right.startswith("if_not_exists("):
                inner, delta_key = right.rsplit("+", 1)
                ref, default_key = inner.strip()[len("if_not_exists("):-1].split(",")
                base = item.get(names[ref.strip()], values[default_key.strip()])
                item[attr] = int(base) + int(values[delta_key.strip()])
            else:
                item[attr] = copy.deepcopy(values[right])

    # table API ---------------------------------------------------------

    def get_item(self, *, Key: Dict[str, str], **_: Any) -> Dict[str, Any]:
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(
        self,
        *,
        Item: Dict[str, Any],
        ConditionExpression: Optional[str] = None,
        ExpressionAttributeNames: Optional[Dict[str, str]] = None,
        ExpressionAttributeValues: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        key = (Item["pk"], Item["sk"])
        if not self._check(self.items.get(key), ConditionExpression, ExpressionAttributeNames or {}, ExpressionAttributeValues or {}):
            raise _conditional_error("PutItem")
        self.items[key] = copy.deepcopy(Item)
        return {}

    def update_item(
        self,
        *,
        Key: Dict[str, str],
        UpdateExpression: str,
        ConditionExpression: Optional[str] = None,
        ExpressionAttributeNames: Optional[Dict[str, str]] = None,
        ExpressionAttributeValues: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        key = (Key["pk"], Key["sk"])
        names = ExpressionAttributeNames or {}
        values = ExpressionAttributeValues or {}
        current = self.items.get(key)
        if not self._check(current, ConditionExpression, names, values):
            raise _conditional_error("UpdateItem")
        item = copy.deepcopy(current) if current else {"pk": key[0], "sk": key[1]}
        self._apply_update(item, UpdateExpression, names, values)
        self.items[key] = item
        return {}

    def query(self, *, ExpressionAttributeValues: Dict[str, Any], **_: Any) -> Dict[str, Any]:
        pk = ExpressionAttributeValues[":pk"]
        prefix = ExpressionAttributeValues.get(":p", "")
        return {"Items": copy.deepcopy(self.rows(pk, prefix))}

    # client API --------------------------------------------------------

    def transact_write_items(self, *, TransactItems: List[Dict[str, Any]]) -> Dict[str, Any]:
        self.transact_calls += 1
        if self.fail_next:
            code, self.fail_next = self.fail_next, None
            raise ClientError({"Error": {"Code": code, "Message": "injected"}}, "TransactWriteItems")

        staged = []
        seen_keys = set()
        reasons = []
        failed = False
        for op in TransactItems:
            (kind, body), = op.items()
            names = body.get("ExpressionAttributeNames") or {}
            values = _decode(body.get("ExpressionAttributeValues"))
            if kind == "Put":
                item = _decode(body["Item"])
                key = (item["pk"], item["sk"])
            else:
                k = _decode(body["Key"])
                key = (k["pk"], k["sk"])
                item = None
            if key in seen_keys:
                raise ClientError(
                    {"Error": {"Code": "ValidationException", "Message": "multiple operations on one item"}},
                    "TransactWriteItems",
                )
            seen_keys.add(key)
            ok = self._check(self.items.get(key), body.get("ConditionExpression"), names, values)
            reasons.append({"Code": "None" if ok else "ConditionalCheckFailed"})
            failed = failed or not ok
            staged.append((kind, key, item, body, names, values))

        if self.conflict_next > 0:
            self.conflict_next -= 1
            failed = True
            reasons = [{"Code": "ConditionalCheckFailed"} for _ in TransactItems]

        if failed:
            raise ClientError(
                {
                    "Error": {"Code": "TransactionCanceledException", "Message": "Transaction cancelled"},
                    "CancellationReasons": reasons,
                },
                "TransactWriteItems",
            )

        for kind, key, item, body, names, values in staged:
            if kind == "Put":
                self.items[key] = item
            else:
                current = copy.deepcopy(self.items.get(key)) or {"pk": key[0], "sk": key[1]}
                self._apply_update(current, body["UpdateExpression"], names, values)
                self.items[key] = current
        return {}


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, ts: Optional[int] = None) -> str:
    ts = int(ts or time.time())
    mac = hmac.new(secret.encode(), f"{ts}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def stripe_event(event_type: str, obj: Dict[str, Any], *, event_id: str = "evt_1", created: int = 1_700_000_000) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "created": created, "data": {"object": obj}}).encode()


def subscription_obj(agreement_id: str, status: str, *, fan_id: str = "fan-1", creator_id: str = "creator-1", **extra: Any) -> Dict[str, Any]:
    return {
        "id": agreement_id,
        "object": "subscription",
        "status": status,
        "current_period_start": 1_700_000_000,
        "current_period_end": 1_702_592_000,
        "cancel_at_period_end": False,
        "metadata": {"type": "subscription", "fan_id": fan_id, "creator_id": creator_id},
        **extra,
    }


def invoice_obj(invoice_id: str, agreement_id: Optional[str], amount: int) -> Dict[str, Any]:
    return {
        "id": invoice_id,
        "object": "invoice",
        "subscription": agreement_id,
        "amount_paid": amount,
        "currency": "usd",
        "lines": {"data": [{"period": {"start": 1_700_000_000, "end": 1_702_592_000}}]},
    }


def checkout_obj(session_id: str, metadata: Dict[str, str], *, amount: int, payment_intent: str = "pi_1", payment_status: str = "paid") -> Dict[str, Any]:
    return {
        "id": session_id,
        "object": "checkout.session",
        "mode": "payment",
        "payment_status": payment_status,
        "payment_intent": payment_intent,
        "amount_total": amount,
        "currency": "usd",
        "metadata": metadata,
    }


def transfer_obj(transfer_id: str, payout_id: str, creator_id: str, amount: int) -> Dict[str, Any]:
    return {
        "id": transfer_id,
        "object": "transfer",
        "amount": amount,
        "metadata": {"payout_id": payout_id, "creator_id": creator_id, "type": "creator_payout"},
    }

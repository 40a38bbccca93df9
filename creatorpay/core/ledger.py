"""DynamoDB access for the revenue ledger.

Every item lives in one table keyed by ``pk``/``sk``. Single-item reads use
consistent reads so a request observes writes committed before it started.
Multi-item effects go through ``transact`` so that an event's ledger rows,
its idempotency guard and the creator balance commit or fail together.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from .settings import S
from .tables import T
from .time import now_ts

Cond = Tuple[str, Dict[str, str], Dict[str, Any]]

_serializer = TypeSerializer()

CONDITIONAL_CODES = {"ConditionalCheckFailedException", "TransactionCanceledException"}


# -----------------------------
# Keys
# -----------------------------

def creator_pk(creator_id: str) -> str:
    return f"CREATOR#{creator_id}"


def fan_pk(fan_id: str) -> str:
    return f"FAN#{fan_id}"


def purchase_pk(purchase_id: str) -> str:
    return f"PURCHASE#{purchase_id}"


def tip_pk(tip_id: str) -> str:
    return f"TIP#{tip_id}"


def invoice_pk(invoice_id: str) -> str:
    return f"INVOICE#{invoice_id}"


def payment_intent_pk(payment_intent_id: str) -> str:
    return f"PAYMENT_INTENT#{payment_intent_id}"


def agreement_pk(agreement_id: str) -> str:
    return f"AGREEMENT#{agreement_id}"


def stripe_account_pk(account_id: str) -> str:
    return f"STRIPE_ACCOUNT#{account_id}"


def subscription_sk(creator_id: str, agreement_id: str) -> str:
    return f"SUB#{creator_id}#{agreement_id}"


def earning_sk(kind: str, external_id: str) -> str:
    return f"EARNING#{kind}#{external_id}"


def payout_sk(payout_id: str) -> str:
    return f"PAYOUT#{payout_id}"


def content_sk(content_id: str) -> str:
    return f"CONTENT#{content_id}"


def unlock_sk(content_id: str) -> str:
    return f"UNLOCK#{content_id}"


# -----------------------------
# Conditions
# -----------------------------

def cond_absent() -> Cond:
    return "attribute_not_exists(pk)", {}, {}


def cond_exists() -> Cond:
    return "attribute_exists(pk)", {}, {}


def cond_eq(attr: str, value: Any) -> Cond:
    return f"#c_{attr} = :c_{attr}", {f"#c_{attr}": attr}, {f":c_{attr}": value}


def cond_in(attr: str, values: Iterable[Any]) -> Cond:
    placeholders = []
    vals: Dict[str, Any] = {}
    for i, value in enumerate(values):
        key = f":c_{attr}_{i}"
        placeholders.append(key)
        vals[key] = value
    return f"#c_{attr} IN ({', '.join(placeholders)})", {f"#c_{attr}": attr}, vals


def cond_all(*conds: Cond) -> Cond:
    exprs: List[str] = []
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    for expr, n, v in conds:
        exprs.append(expr)
        names.update(n)
        values.update(v)
    return " AND ".join(exprs), names, values


def update_expression(
    sets: Optional[Dict[str, Any]] = None,
    deltas: Optional[Dict[str, int]] = None,
) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
    parts: List[str] = []
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    for attr, value in (sets or {}).items():
        names[f"#u_{attr}"] = attr
        values[f":u_{attr}"] = value
        parts.append(f"#u_{attr} = :u_{attr}")
    for attr, delta in (deltas or {}).items():
        names[f"#u_{attr}"] = attr
        values[f":d_{attr}"] = int(delta)
        values[":z"] = 0
        parts.append(f"#u_{attr} = if_not_exists(#u_{attr}, :z) + :d_{attr}")
    return "SET " + ", ".join(parts), names, values


def is_conditional_failure(exc: ClientError) -> bool:
    """True when a write was refused by its condition rather than by a fault.

    A cancelled transaction only counts when every cancellation reason is a
    failed condition; throttling or transaction conflicts stay transient.
    """
    code = exc.response.get("Error", {}).get("Code")
    if code not in CONDITIONAL_CODES:
        return False
    if code == "TransactionCanceledException":
        reasons = exc.response.get("CancellationReasons") or []
        return all(r.get("Code") in ("None", "ConditionalCheckFailed", None) for r in reasons)
    return True


# -----------------------------
# Single item access
# -----------------------------

def ddb_get(pk: str, sk: str) -> Optional[Dict[str, Any]]:
    resp = T.ledger.get_item(Key={"pk": pk, "sk": sk}, ConsistentRead=True)
    return resp.get("Item")


def ddb_query_prefix(pk: str, prefix: str) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    kwargs: Dict[str, Any] = {
        "KeyConditionExpression": "pk = :pk AND begins_with(sk, :p)",
        "ExpressionAttributeValues": {":pk": pk, ":p": prefix},
        "ConsistentRead": True,
    }
    while True:
        resp = T.ledger.query(**kwargs)
        items.extend(resp.get("Items", []))
        last = resp.get("LastEvaluatedKey")
        if not last:
            return items
        kwargs["ExclusiveStartKey"] = last


def ddb_put(item: Dict[str, Any], *, condition: Optional[Cond] = None) -> None:
    kwargs: Dict[str, Any] = {"Item": item}
    if condition:
        expr, names, values = condition
        kwargs["ConditionExpression"] = expr
        if names:
            kwargs["ExpressionAttributeNames"] = names
        if values:
            kwargs["ExpressionAttributeValues"] = values
    T.ledger.put_item(**kwargs)


def put_if_absent(item: Dict[str, Any]) -> bool:
    try:
        ddb_put(item, condition=cond_absent())
        return True
    except ClientError as exc:
        if is_conditional_failure(exc):
            return False
        raise


def ddb_update(
    pk: str,
    sk: str,
    *,
    sets: Optional[Dict[str, Any]] = None,
    deltas: Optional[Dict[str, int]] = None,
    condition: Optional[Cond] = None,
) -> None:
    expr, names, values = update_expression(sets, deltas)
    kwargs: Dict[str, Any] = {"Key": {"pk": pk, "sk": sk}, "UpdateExpression": expr}
    if condition:
        cexpr, cnames, cvalues = condition
        kwargs["ConditionExpression"] = cexpr
        names = {**names, **cnames}
        values = {**values, **cvalues}
    kwargs["ExpressionAttributeNames"] = names
    if values:
        kwargs["ExpressionAttributeValues"] = values
    T.ledger.update_item(**kwargs)


def update_if(pk: str, sk: str, condition: Cond, **kwargs: Any) -> bool:
    try:
        ddb_update(pk, sk, condition=condition, **kwargs)
        return True
    except ClientError as exc:
        if is_conditional_failure(exc):
            return False
        raise


# -----------------------------
# Transactions
# -----------------------------

def _wire(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serializer.serialize(v) for k, v in values.items()}


def tx_put(item: Dict[str, Any], condition: Optional[Cond] = None) -> Dict[str, Any]:
    op: Dict[str, Any] = {"TableName": S.ledger_table_name, "Item": _wire(item)}
    if condition:
        expr, names, values = condition
        op["ConditionExpression"] = expr
        if names:
            op["ExpressionAttributeNames"] = names
        if values:
            op["ExpressionAttributeValues"] = _wire(values)
    return {"Put": op}


def tx_update(
    pk: str,
    sk: str,
    *,
    sets: Optional[Dict[str, Any]] = None,
    deltas: Optional[Dict[str, int]] = None,
    condition: Optional[Cond] = None,
) -> Dict[str, Any]:
    expr, names, values = update_expression(sets, deltas)
    op: Dict[str, Any] = {
        "TableName": S.ledger_table_name,
        "Key": _wire({"pk": pk, "sk": sk}),
        "UpdateExpression": expr,
    }
    if condition:
        cexpr, cnames, cvalues = condition
        op["ConditionExpression"] = cexpr
        names = {**names, **cnames}
        values = {**values, **cvalues}
    op["ExpressionAttributeNames"] = names
    if values:
        op["ExpressionAttributeValues"] = _wire(values)
    return {"Update": op}


def transact(ops: List[Dict[str, Any]]) -> bool:
    """Apply ``ops`` atomically. Returns False when a condition refused them."""
    try:
        T.client.transact_write_items(TransactItems=ops)
        return True
    except ClientError as exc:
        if is_conditional_failure(exc):
            return False
        raise


# -----------------------------
# Balance row
# -----------------------------

BAL_FIELDS = [
    "gross_cents",
    "commission_cents",
    "earned_cents",
    "committed_cents",
    "paid_cents",
]


def ensure_balance_row(creator_id: str) -> Dict[str, Any]:
    pk = creator_pk(creator_id)
    existing = ddb_get(pk, "BALANCE")
    if existing:
        return existing
    item = {
        "pk": pk,
        "sk": "BALANCE",
        "creator_id": creator_id,
        "currency": S.stripe_default_currency,
        **{k: 0 for k in BAL_FIELDS},
        "updated_at": now_ts(),
    }
    if put_if_absent(item):
        return item
    return ddb_get(pk, "BALANCE") or item


def tx_balance_delta(
    creator_id: str,
    delta: Dict[str, int],
    *,
    condition: Optional[Cond] = None,
) -> Dict[str, Any]:
    return tx_update(
        creator_pk(creator_id),
        "BALANCE",
        sets={"creator_id": creator_id, "updated_at": now_ts()},
        deltas={k: int(delta.get(k, 0)) for k in BAL_FIELDS},
        condition=condition,
    )


def available_cents(balance_item: Dict[str, Any]) -> int:
    return int(balance_item.get("earned_cents", 0)) - int(balance_item.get("committed_cents", 0))

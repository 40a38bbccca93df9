from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Optional

from creatorpay.core.ledger import ddb_put, ddb_query_prefix
from creatorpay.core.normalize import client_ip_from_request
from creatorpay.core.settings import S
from creatorpay.core.time import now_ts
from creatorpay.metrics import record_reconciliation_alert

SEVERITIES = ("debug", "info", "warning", "security", "error")

RECONCILE_PK = "RECONCILE"


def audit_event(event: str, user_sub: Optional[str], request=None, **fields: Any) -> Dict[str, Any]:
    severity = str(fields.pop("severity", "info"))
    if severity not in SEVERITIES:
        severity = "info"
    payload: Dict[str, Any] = {
        "event": event,
        "user_sub": user_sub,
        "severity": severity,
        "ts": now_ts(),
        **fields,
    }
    if request is not None:
        payload["ip"] = client_ip_from_request(request)
        payload["user_agent"] = (request.headers.get("user-agent", "")[:256])

    # stdout audit log
    if S.audit_log_enabled:
        print(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))
    return payload


def raise_reconciliation_alert(kind: str, *, event_id: Optional[str] = None, **refs: Any) -> Dict[str, Any]:
    """Persist an operator alert for money the ledger cannot attribute."""
    ts = now_ts()
    alert_id = uuid.uuid4().hex
    item = {
        "pk": RECONCILE_PK,
        "sk": f"{ts}#{alert_id}",
        "alert_id": alert_id,
        "kind": kind,
        "event_id": event_id,
        "status": "open",
        "details": {k: v for k, v in refs.items() if v is not None},
        "created_at": ts,
    }
    ddb_put(item)
    record_reconciliation_alert(kind)
    audit_event("reconciliation_alert", None, severity="warning", kind=kind, alert_id=alert_id, event_id=event_id, **refs)
    return item


def list_reconciliation_alerts(status: Optional[str] = "open", limit: int = 100) -> List[Dict[str, Any]]:
    items = ddb_query_prefix(RECONCILE_PK, "")
    if status:
        items = [it for it in items if it.get("status") == status]
    items.sort(key=lambda x: x.get("created_at", 0), reverse=True)
    return items[: max(1, min(limit, 500))]

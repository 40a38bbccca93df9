from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from creatorpay.auth.deps import require_ops_user
from creatorpay.services.audit import list_reconciliation_alerts
from creatorpay.services.payouts import balance_drift, recompute_balance

router = APIRouter(tags=["ops"])


@router.get("/api/ops/reconciliation")
def reconciliation_alerts(
    status: Optional[str] = Query(default="open"),
    limit: int = Query(default=100, ge=1, le=500),
    _ops: str = Depends(require_ops_user),
) -> Dict[str, Any]:
    return {"alerts": list_reconciliation_alerts(status=status or None, limit=limit)}


@router.get("/api/ops/creators/{creator_id}/balance")
def creator_balance(creator_id: str, _ops: str = Depends(require_ops_user)) -> Dict[str, Any]:
    return {
        "creator_id": creator_id,
        "derived": recompute_balance(creator_id),
        "drift": balance_drift(creator_id),
    }

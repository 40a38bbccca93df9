from __future__ import annotations

from typing import Any, Dict, Optional

from creatorpay.core.ledger import creator_pk, ddb_query_prefix

CATEGORIES = ("subscription", "purchase", "tip")


def _bucket() -> Dict[str, int]:
    return {"count": 0, "gross_cents": 0, "commission_cents": 0, "creator_net_cents": 0}


def earnings_breakdown(creator_id: str, since: Optional[int] = None, until: Optional[int] = None) -> Dict[str, Any]:
    """Sales per category from the creator's earning lines."""
    by_kind = {k: _bucket() for k in CATEGORIES}
    total = _bucket()
    for line in ddb_query_prefix(creator_pk(creator_id), "EARNING#"):
        created = int(line.get("created_at") or 0)
        if since is not None and created < since:
            continue
        if until is not None and created >= until:
            continue
        bucket = by_kind.setdefault(line.get("kind") or "other", _bucket())
        for b in (bucket, total):
            b["count"] += 1
            b["gross_cents"] += int(line.get("gross_cents", 0))
            b["commission_cents"] += int(line.get("commission_cents", 0))
            b["creator_net_cents"] += int(line.get("creator_net_cents", 0))
    return {"creator_id": creator_id, "since": since, "until": until, "categories": by_kind, "total": total}

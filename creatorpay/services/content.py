from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from creatorpay.core.ledger import content_sk, creator_pk, ddb_get, ddb_put, ddb_query_prefix
from creatorpay.core.time import now_ts
from creatorpay.services.access import ContentItem


def item_from_row(row: Dict[str, Any]) -> ContentItem:
    return ContentItem(
        content_id=row["content_id"],
        creator_id=row["creator_id"],
        is_premium=bool(row.get("is_premium", False)),
        price_cents=int(row.get("price_cents") or 0),
        is_published=bool(row.get("is_published", False)),
        title=row.get("title"),
        description=row.get("description"),
        media_url=row.get("media_url"),
        media_type=row.get("media_type"),
        created_at=int(row.get("created_at") or 0),
    )


def put_content_item(
    creator_id: str,
    *,
    title: Optional[str],
    media_url: str,
    media_type: str = "image",
    description: Optional[str] = None,
    is_premium: bool = False,
    price_cents: int = 0,
    is_published: bool = True,
    content_id: Optional[str] = None,
) -> ContentItem:
    if is_premium and int(price_cents) <= 0:
        raise ValueError("premium content needs a positive price")
    cid = content_id or f"cnt_{uuid.uuid4().hex}"
    existing = ddb_get(creator_pk(creator_id), content_sk(cid))
    ts = now_ts()
    row = {
        "pk": creator_pk(creator_id),
        "sk": content_sk(cid),
        "content_id": cid,
        "creator_id": creator_id,
        "title": title,
        "description": description,
        "media_url": media_url,
        "media_type": media_type,
        "is_premium": bool(is_premium),
        "price_cents": int(price_cents) if is_premium else 0,
        "is_published": bool(is_published),
        "created_at": int(existing["created_at"]) if existing else ts,
        "updated_at": ts,
    }
    ddb_put(row)
    # Lookup by id alone, used by the purchase flow.
    ddb_put({"pk": f"CONTENT#{cid}", "sk": "REF", "creator_id": creator_id})
    return item_from_row(row)


def get_content_item(content_id: str) -> Optional[ContentItem]:
    ref = ddb_get(f"CONTENT#{content_id}", "REF")
    if not ref:
        return None
    row = ddb_get(creator_pk(ref["creator_id"]), content_sk(content_id))
    return item_from_row(row) if row else None


def list_creator_content(creator_id: str) -> List[ContentItem]:
    rows = ddb_query_prefix(creator_pk(creator_id), "CONTENT#")
    items = [item_from_row(r) for r in rows]
    items.sort(key=lambda x: x.created_at, reverse=True)
    return items

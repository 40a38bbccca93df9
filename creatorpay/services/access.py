from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from creatorpay.core.ledger import ddb_get, ddb_query_prefix, fan_pk, unlock_sk


@dataclass(frozen=True)
class ViewerContext:
    viewer_id: Optional[str] = None


@dataclass(frozen=True)
class ContentItem:
    content_id: str
    creator_id: str
    is_premium: bool = False
    price_cents: int = 0
    is_published: bool = True
    title: Optional[str] = None
    description: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    created_at: int = 0


@dataclass(frozen=True)
class AccessDecision:
    can_view: bool
    should_blur: bool
    reason: str = ""


def has_unlock(fan_id: str, content_id: str) -> bool:
    return ddb_get(fan_pk(fan_id), unlock_sk(content_id)) is not None


def has_active_subscription(fan_id: str, creator_id: str) -> bool:
    # past_due and unpaid rows keep their history but grant nothing.
    rows = ddb_query_prefix(fan_pk(fan_id), f"SUB#{creator_id}#")
    return any(r.get("status") == "active" for r in rows)


def can_view(viewer: ViewerContext, item: ContentItem) -> AccessDecision:
    """Decide whether ``viewer`` may see ``item`` unblurred.

    Reads the ledger on every call; the caller owns any request scoping.
    """
    vid = viewer.viewer_id
    if not vid:
        return AccessDecision(False, True, "anonymous")
    if vid == item.creator_id:
        return AccessDecision(True, False, "owner")
    if item.is_premium:
        if has_unlock(vid, item.content_id):
            return AccessDecision(True, False, "purchased")
        return AccessDecision(False, True, "purchase_required")
    if has_active_subscription(vid, item.creator_id):
        return AccessDecision(True, False, "subscribed")
    return AccessDecision(False, True, "subscription_required")


def visible_items(viewer: ViewerContext, items: Iterable[ContentItem]) -> List[ContentItem]:
    out: List[ContentItem] = []
    for item in items:
        if item.is_published or viewer.viewer_id == item.creator_id:
            out.append(item)
    return out


def present_item(item: ContentItem, decision: AccessDecision) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "content_id": item.content_id,
        "creator_id": item.creator_id,
        "title": item.title,
        "description": item.description,
        "media_type": item.media_type,
        "media_url": None if decision.should_blur else item.media_url,
        "is_premium": item.is_premium,
        "is_published": item.is_published,
        "created_at": item.created_at,
        "can_view": decision.can_view,
        "should_blur": decision.should_blur,
    }
    if decision.should_blur and item.is_premium:
        out["price_to_unlock_cents"] = item.price_cents
    return out

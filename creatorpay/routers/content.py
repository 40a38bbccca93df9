from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException

from creatorpay.auth.deps import require_user
from creatorpay.models import ContentCreateReq
from creatorpay.services.access import ViewerContext, can_view, present_item, visible_items
from creatorpay.services.accounts import ensure_account
from creatorpay.services.content import get_content_item, list_creator_content, put_content_item

router = APIRouter(tags=["content"])


@router.get("/api/creators/{creator_id}/posts")
def list_posts(creator_id: str, x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    viewer = ViewerContext(viewer_id=x_user_id or None)
    posts = []
    for item in visible_items(viewer, list_creator_content(creator_id)):
        posts.append(present_item(item, can_view(viewer, item)))
    return {"creator_id": creator_id, "posts": posts}


@router.post("/api/creator/content")
def create_content(body: ContentCreateReq, x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    creator_id = require_user(x_user_id)
    if body.content_id:
        existing = get_content_item(body.content_id)
        if existing and existing.creator_id != creator_id:
            raise HTTPException(403, "Content belongs to another creator")
    ensure_account(creator_id)
    try:
        item = put_content_item(
            creator_id,
            title=body.title,
            description=body.description,
            media_url=body.media_url,
            media_type=body.media_type,
            is_premium=body.is_premium,
            price_cents=body.price_cents,
            is_published=body.is_published,
            content_id=body.content_id,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    owner = ViewerContext(viewer_id=creator_id)
    return present_item(item, can_view(owner, item))

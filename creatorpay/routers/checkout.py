from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Request

from creatorpay.auth.deps import require_user
from creatorpay.models import CheckoutResp, PurchaseReq, SubscribeReq, TipReq
from creatorpay.services.checkout import CheckoutError, start_purchase, start_subscription, start_tip

router = APIRouter(tags=["checkout"])


def _raise(exc: CheckoutError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.post("/api/content/{content_id}/purchase", response_model=CheckoutResp)
def purchase_content(
    content_id: str,
    req: Request,
    body: Optional[PurchaseReq] = None,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    fan_id = require_user(x_user_id)
    try:
        return start_purchase(fan_id, content_id, email=body.email if body else None, request=req)
    except CheckoutError as exc:
        _raise(exc)


@router.post("/api/messages/tip", response_model=CheckoutResp)
def send_tip(body: TipReq, req: Request, x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    fan_id = require_user(x_user_id)
    try:
        return start_tip(
            fan_id,
            body.creator_id,
            body.amount_cents,
            message=body.message,
            conversation_id=body.conversation_id,
            email=body.email,
            request=req,
        )
    except CheckoutError as exc:
        _raise(exc)


@router.post("/api/creators/{creator_id}/subscribe", response_model=CheckoutResp)
def subscribe(
    creator_id: str,
    req: Request,
    body: Optional[SubscribeReq] = None,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    fan_id = require_user(x_user_id)
    try:
        return start_subscription(fan_id, creator_id, email=body.email if body else None, request=req)
    except CheckoutError as exc:
        _raise(exc)

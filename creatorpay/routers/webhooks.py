from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request

from creatorpay.services import reconciler

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/stripe")
async def stripe_webhook(req: Request) -> Dict[str, Any]:
    payload = await req.body()
    sig = req.headers.get("stripe-signature")

    # Store errors propagate as a 500 so Stripe redelivers.
    result = reconciler.handle(payload, sig)
    if not result.ack:
        raise HTTPException(400, f"Webhook error: {result.reason}")
    return {"received": True, "outcome": result.outcome, "event_id": result.event_id}

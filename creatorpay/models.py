from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, conint


class PurchaseReq(BaseModel):
    email: Optional[str] = None


class TipReq(BaseModel):
    creator_id: str = Field(..., min_length=1, max_length=128)
    amount_cents: conint(gt=0)
    message: Optional[str] = Field(default=None, max_length=500)
    conversation_id: Optional[str] = Field(default=None, max_length=128)
    email: Optional[str] = None


class SubscribeReq(BaseModel):
    email: Optional[str] = None


class CheckoutResp(BaseModel):
    session_id: str
    checkout_url: str
    purchase_id: Optional[str] = None
    tip_id: Optional[str] = None


class ContentCreateReq(BaseModel):
    content_id: Optional[str] = Field(default=None, max_length=128)
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    media_url: str = Field(..., min_length=1, max_length=2048)
    media_type: Literal["image", "video", "audio", "text"] = "image"
    is_premium: bool = False
    price_cents: conint(ge=0) = 0
    is_published: bool = True


class PayoutReq(BaseModel):
    amount_cents: Optional[conint(gt=0)] = None


class ConnectReq(BaseModel):
    email: Optional[str] = None


class SubscriptionPriceReq(BaseModel):
    price_cents: conint(gt=0)

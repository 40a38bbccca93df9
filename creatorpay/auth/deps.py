from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException

from creatorpay.core.settings import S


def require_user(x_user_id: Optional[str], expected_user_id: Optional[str] = None) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity (X-User-Id header)")
    if expected_user_id and x_user_id != expected_user_id:
        raise HTTPException(status_code=403, detail="User does not match requested identity")
    return x_user_id


def require_ops_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    user_id = require_user(x_user_id)
    if user_id not in S.ops_users():
        raise HTTPException(status_code=403, detail="Operator access required")
    return user_id

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException

def client_ip_from_request(req) -> str:
    xff = req.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return req.client.host if req.client else "0.0.0.0"

def normalize_email(s: Optional[str]) -> Optional[str]:
    if s is None:
        return None
    s = s.strip().lower()
    if "@" not in s or len(s) > 254:
        raise HTTPException(400, "Invalid email")
    return s

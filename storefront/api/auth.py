from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request

from storefront.application.schemas import Principal
from storefront.core.logging_config import set_request_context
from storefront.core_settings import get_settings

BEARER_PREFIX = "Bearer "
ROLES = {"user", "admin", "guest"}

def create_access_token(subject: str, role: str = "user", email: Optional[str] = None, expires_minutes: int = 60) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "role": role, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

def principal_from_claims(claims: Optional[dict]) -> Optional[Principal]:
    if not claims or not claims.get("sub"):
        return None
    role = claims.get("role", "user")
    if role not in ROLES:
        return None
    return Principal(user_id=str(claims["sub"]), email=claims.get("email"), role=role)

def get_current_principal(request: Request) -> Principal:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    principal = principal_from_claims(decode_access_token(auth_header[len(BEARER_PREFIX):]))
    if principal is None:
        raise HTTPException(status_code=401, detail="Not authorized, token failed")
    set_request_context(user_id=principal.user_id)
    return principal

def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Access denied: Admins only")
    return principal

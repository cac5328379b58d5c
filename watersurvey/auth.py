"""
Bearer token authentication

Tokens are issued by the external auth service and carry the caller's id in
`sub` and their role (customer, vendor, admin) in `role`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY

logger = logging.getLogger(__name__)

security = HTTPBearer()

ROLES = ("customer", "vendor", "admin")


@dataclass(frozen=True)
class Actor:
    id: int
    role: str


def create_access_token(
    actor_id: int, role: str, expires_delta: Optional[timedelta] = None
) -> str:
    """Create a JWT token for an actor (tooling and tests; production tokens come from the auth service)"""
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=12))
    to_encode = {"sub": str(actor_id), "role": role, "exp": expire}
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify and decode a JWT token

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    role = payload.get("role")
    try:
        actor_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")
    if role not in ROLES:
        raise HTTPException(status_code=401, detail="Invalid token role")
    return Actor(id=actor_id, role=role)


def require_role(role: str):
    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role != role:
            raise HTTPException(status_code=403, detail=f"{role.capitalize()} access required")
        return actor

    return dependency


get_current_customer = require_role("customer")
get_current_vendor = require_role("vendor")
get_current_admin = require_role("admin")

"""
Title Registry - Authentication Boundary

Identity is asserted by an upstream identity provider as a signed JWT:
    sub             actor ref
    role            citizen | registrar | court | admin
    registrar_role  optional registrar tier, used by sequential approval
The core never stores users or passwords.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .exceptions import PermissionDeniedError
from .models.db_models import ActorRole
from .models.domain import Actor

# Configuration
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "title-registry-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24

# Bearer token security
security = HTTPBearer()


def create_access_token(
    actor_ref: str,
    role: str,
    registrar_role: Optional[str] = None,
    expires_in: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token with role claims (local runs, tests, seeding)."""
    expire = datetime.now(timezone.utc) + (expires_in or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode = {
        "sub": actor_ref,
        "role": role,
        "exp": expire,
    }
    if registrar_role:
        to_encode["registrar_role"] = registrar_role
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token. Expired or tampered tokens return None."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    Dependency to get the current authenticated actor.
    Validates the JWT and maps its claims onto an Actor.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    actor_ref = payload.get("sub")
    if not actor_ref:
        raise credentials_exception

    try:
        role = ActorRole(payload.get("role"))
    except ValueError:
        raise credentials_exception

    return Actor(ref=actor_ref, role=role, registrar_role=payload.get("registrar_role"))


def require_roles(*roles: ActorRole):
    """
    Dependency factory restricting a route to the given roles.
    Use as: actor: Actor = Depends(require_roles(ActorRole.REGISTRAR))
    """
    allowed = set(roles)

    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            raise PermissionDeniedError(
                f"Role '{actor.role_value}' may not perform this action",
                details={"allowed_roles": sorted(r.value for r in allowed)},
            )
        return actor

    return dependency

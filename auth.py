import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from errors import AuthenticationError, AuthorizationError
from models.models import Actor

load_dotenv()

JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))

TOKEN_ROLES = ("user", "doctor", "hospital", "admin")

security = HTTPBearer(auto_error=False)


def create_access_token(actor_id: str, role: str, expires_minutes: Optional[int] = None) -> str:
    """Sign a token for ``actor_id``. Used by trusted tooling and tests; login lives elsewhere."""
    if role not in TOKEN_ROLES:
        raise ValueError(f"unknown role {role!r}")
    payload = {
        "id": actor_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def get_actor(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Actor:
    if credentials is None:
        raise AuthenticationError("Not Authorized, Login again")
    try:
        data = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise AuthenticationError("Token invalid or expired")

    actor_id = data.get("id") or data.get("sub")
    role = data.get("role")
    if not actor_id or role not in TOKEN_ROLES:
        raise AuthenticationError("Token invalid or expired")
    return Actor(id=str(actor_id), role=role)


def require_roles(*roles: str):
    """Dependency factory ensuring the caller holds one of ``roles``."""

    def checker(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise AuthorizationError("Not Authorized")
        return actor

    return checker

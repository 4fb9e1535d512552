"""
Session token handling.

Sessions are issued by the identity service as HS256 JWTs.  This service
only verifies them; it never re-authenticates a voter.

Claims
------
sub   external voter identifier (``voters.voter_id``); for administrators
      it is the identifier they must also be registered under as a voter
role  ``VOTER`` | ``ADMIN`` | ``SUPER_ADMIN``
exp   expiry (optional)
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, Request
from jose import JWTError, jwt

from . import config

ADMIN_ROLES = frozenset({"ADMIN", "SUPER_ADMIN"})


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def create_session_token(user_id: str, role: str = "VOTER", hours: int = 24) -> str:
    """Issue a session token.  Used by tooling and tests; production tokens come from the identity service."""
    return jwt.encode(
        {"sub": str(user_id), "role": role,
         "exp": datetime.now(timezone.utc) + timedelta(hours=hours)},
        config.JWT_SECRET, algorithm=config.JWT_ALGORITHM,
    )


def decode_session_token(token: str) -> Principal:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        msg = "Token expired" if "expired" in str(e).lower() else "Invalid token"
        raise HTTPException(status_code=401, detail=msg)

    if not payload.get("sub") or not payload.get("role"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(user_id=str(payload["sub"]), role=payload["role"])


async def get_principal(request: Request) -> Principal:
    """FastAPI dependency: resolve the bearer token on the request."""
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Unauthenticated: Please log in.")
    return decode_session_token(token)

"""Bearer token issuing and verification.

Accounts are provisioned upstream; this service only needs to verify the
access tokens it is handed and, for tests and tooling, mint new ones.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from .config import settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(subject: str, expires_minutes: int | None = None) -> str:
    issued_at = datetime.now(timezone.utc)
    ttl = timedelta(minutes=expires_minutes or settings.access_token_expires_minutes)
    claims: Dict[str, Any] = {
        "sub": subject,
        "type": ACCESS_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + ttl,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the claims of a valid, unexpired access token, else None."""
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if claims.get("type") != ACCESS_TOKEN_TYPE or not claims.get("sub"):
        return None
    return claims

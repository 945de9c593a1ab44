"""Studio session tokens and the identity-sync handshake that mints them."""

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "studio_session"
SESSION_ISSUER = "aivault-studio-api"


class SyncNotConfigured(RuntimeError):
    """Raised when no sync secret is configured, so no session may be minted."""


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    email: Optional[str]
    expires_at: int


def verify_sync_secret(supplied: Optional[str]) -> bool:
    """Check the identity provider's shared secret.

    Raises ``SyncNotConfigured`` when the server has no secret at all.
    """
    expected = (settings.AUTH_SYNC_SECRET or "").strip()
    if not expected:
        raise SyncNotConfigured("AUTH_SYNC_SECRET is not configured.")
    if not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.strip().encode("utf-8"))


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24)
    expires_at = int((now + timedelta(hours=max(ttl_hours, 1))).timestamp())
    claims: Dict[str, Any] = {
        "sub": user_id,
        "iss": SESSION_ISSUER,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": expires_at,
    }
    if email:
        claims["email"] = email

    return {
        "token": jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM),
        "expires_at": expires_at,
    }


def decode_session_token(token: str) -> SessionClaims:
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=SESSION_ISSUER,
        )
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if str(payload.get("type", "")).strip() != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Session token missing subject.")

    email = str(payload.get("email") or "").strip() or None
    return SessionClaims(user_id=subject, email=email, expires_at=int(payload["exp"]))

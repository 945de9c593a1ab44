"""Authentication dependencies: session resolution and lazy ledger accounts."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services import ledger
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None
    credits_remaining: Optional[int] = None


def ensure_user_scope(auth_user_id: str, supplied_user_id: Optional[str]) -> str:
    """Return authenticated user_id and reject cross-user attempts."""
    if supplied_user_id and supplied_user_id != auth_user_id:
        raise HTTPException(status_code=403, detail="user_id does not match authenticated session.")
    return auth_user_id


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve the caller from the Bearer studio session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        claims = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return AuthContext(user_id=claims.user_id, email=claims.email)


async def get_optional_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> Optional[AuthContext]:
    """Anonymous callers get ``None``; a token that is present but invalid is still rejected."""
    if not credentials:
        return None
    return await get_auth_context(credentials)


async def _with_account(auth: AuthContext, db: AsyncSession) -> AuthContext:
    # Sessions can outlive a database reset, so the account is created on first use.
    user = await ledger.create_account(auth.user_id, db, email=auth.email)
    auth.email = auth.email or user.email
    auth.credits_remaining = int(user.credits_remaining or 0)
    return auth


async def get_account_context(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Authenticated caller whose ledger account is guaranteed to exist."""
    return await _with_account(auth, db)


async def get_optional_account_context(
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    db: AsyncSession = Depends(get_db),
) -> Optional[AuthContext]:
    if auth is None:
        return None
    return await _with_account(auth, db)

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import Settings
from .database import get_db
from .deps import get_settings
from .errors import Forbidden, NotFound, Unauthenticated
from .models import Account

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

# argon2 for new hashes; bcrypt hashes are still accepted.
pwd_context = CryptContext(schemes=["argon2", "bcrypt"], deprecated="auto")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def _encode(settings: Settings, account: Account, token_type: str, expires_in: timedelta, secret: str) -> str:
    to_encode = {
        "sub": str(account.id),
        "role": account.role,
        "type": token_type,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)


def create_access_token(settings: Settings, account: Account) -> str:
    return _encode(
        settings,
        account,
        "access",
        timedelta(minutes=settings.access_token_expire_minutes),
        settings.jwt_access_secret,
    )


def create_refresh_token(settings: Settings, account: Account) -> str:
    return _encode(
        settings,
        account,
        "refresh",
        timedelta(days=settings.refresh_token_expire_days),
        settings.jwt_refresh_secret,
    )


def _decode(settings: Settings, token: str, secret: str, token_type: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")

    if payload.get("type") != token_type or payload.get("sub") is None:
        raise Unauthenticated("Invalid or expired token")
    return payload


def decode_access_token(settings: Settings, token: str) -> dict:
    return _decode(settings, token, settings.jwt_access_secret, "access")


def decode_refresh_token(settings: Settings, token: str) -> dict:
    return _decode(settings, token, settings.jwt_refresh_secret, "refresh")


# Security scheme for Bearer token; cookies are accepted as a fallback.
bearer_scheme = HTTPBearer(auto_error=False)


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(ACCESS_COOKIE)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> Account:
    token = _extract_token(request, credentials)
    if not token:
        raise Unauthenticated("Authentication required")

    payload = decode_access_token(settings, token)
    try:
        account_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise Unauthenticated("Invalid or expired token")

    account = db.get(Account, account_id)
    if account is None:
        raise NotFound("User not found")
    if account.is_banned:
        raise Forbidden("Account has been banned")
    return account


def require_roles(*roles: str):
    """Build a dependency admitting only accounts whose role is in ``roles``."""
    allowed = {getattr(role, "value", role) for role in roles}

    def _guard(current_user: Account = Depends(get_current_user)) -> Account:
        if current_user.role not in allowed:
            raise Forbidden("Access denied. Insufficient permissions")
        return current_user

    return _guard

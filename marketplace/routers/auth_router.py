import datetime as dt
import hashlib
import secrets
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import (
    REFRESH_COOKIE,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_current_user,
    get_password_hash,
    verify_password,
)
from ..config import Settings
from ..crud import accounts as account_crud
from ..database import get_db
from ..deps import get_emailer, get_settings
from ..errors import Forbidden, MarketplaceError, Unauthenticated, ValidationFailed
from ..models import Account
from ..notifications import SmtpEmailer
from ..notifications import messages

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_TOKEN_TTL = dt.timedelta(hours=1)


def _hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _user_payload(account: Account) -> dict:
    return {"id": account.id, "name": account.name, "email": account.email, "role": account.role}


def _issue_tokens(response: Response, settings: Settings, account: Account) -> str:
    response.set_cookie(
        REFRESH_COOKIE,
        create_refresh_token(settings, account),
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
    )
    return create_access_token(settings, account)


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    payload: schemas.RegisterRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    account = account_crud.create_account(
        db,
        name=payload.name,
        email=payload.email,
        hashed_password=get_password_hash(payload.password),
        role=payload.role.value,
        phone=payload.phone,
        address=payload.address,
    )
    access_token = _issue_tokens(response, settings, account)
    logger.info("account.registered", account_id=account.id, role=account.role)
    return schemas.envelope(
        {"user": _user_payload(account), "access_token": access_token},
        message="User registered successfully",
    )


@router.post("/login")
def login(
    payload: schemas.LoginRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    account = account_crud.get_account_by_email(db, payload.email)
    if account is None:
        raise Unauthenticated("Invalid email or password")
    if account.is_banned:
        raise Forbidden("Account has been banned")
    if not verify_password(payload.password, account.hashed_password):
        raise Unauthenticated("Invalid email or password")

    access_token = _issue_tokens(response, settings, account)
    return schemas.envelope(
        {"user": _user_payload(account), "access_token": access_token},
        message="Login successful",
    )


@router.post("/refresh-token")
def refresh_token(
    request: Request,
    payload: Optional[schemas.RefreshRequest] = None,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    token = request.cookies.get(REFRESH_COOKIE) or (payload.refresh_token if payload else None)
    if not token:
        raise Unauthenticated("Refresh token required")

    try:
        claims = decode_refresh_token(settings, token)
        account = account_crud.get_account(db, int(claims["sub"]))
    except (Unauthenticated, ValueError):
        raise Unauthenticated("Invalid refresh token")
    if account is None or account.is_banned:
        raise Unauthenticated("Invalid refresh token")

    return schemas.envelope({"access_token": create_access_token(settings, account)})


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(REFRESH_COOKIE)
    return schemas.envelope(message="Logged out successfully")


@router.get("/me")
def me(current_user: Account = Depends(get_current_user)):
    return schemas.envelope({"user": schemas.dump(schemas.AccountOut, current_user)})


@router.patch("/me")
def update_profile(
    payload: schemas.ProfileUpdate,
    current_user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    account = account_crud.update_profile(db, current_user, payload.model_dump(exclude_unset=True))
    return schemas.envelope({"user": schemas.dump(schemas.AccountOut, account)}, message="Profile updated successfully")


@router.patch("/change-password")
def change_password(
    payload: schemas.ChangePassword,
    current_user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(payload.current_password, current_user.hashed_password):
        raise Unauthenticated("Current password is incorrect")
    account_crud.set_password(db, current_user, get_password_hash(payload.new_password))
    return schemas.envelope(message="Password changed successfully")


@router.post("/forgot-password")
def forgot_password(
    payload: schemas.ForgotPasswordRequest,
    settings: Settings = Depends(get_settings),
    emailer: SmtpEmailer = Depends(get_emailer),
    db: Session = Depends(get_db),
):
    account = account_crud.get_account_by_email(db, payload.email)
    if account is None:
        # Same answer either way so the endpoint does not reveal which emails are registered.
        return schemas.envelope(message="If the email exists, a password reset link has been sent.")

    reset_token = secrets.token_hex(32)
    expires_at = dt.datetime.now(dt.timezone.utc) + RESET_TOKEN_TTL
    account_crud.set_reset_token(db, account, _hash_reset_token(reset_token), expires_at)

    reset_url = f"{settings.frontend_url.rstrip('/')}/auth/reset-password?token={reset_token}"
    subject, body = messages.password_reset(account.name, reset_url)
    try:
        sent = emailer.send(to_email=account.email, subject=subject, body=body)
    except Exception:
        logger.exception("password_reset.email_failed", account_id=account.id)
        sent = False

    if not sent:
        account_crud.set_reset_token(db, account, None, None)
        raise MarketplaceError("Email could not be sent. Please try again later.", status.HTTP_500_INTERNAL_SERVER_ERROR)

    return schemas.envelope(message="Password reset email sent. Please check your inbox.")


@router.post("/reset-password")
def reset_password(payload: schemas.ResetPasswordRequest, db: Session = Depends(get_db)):
    account = account_crud.get_account_by_reset_token(
        db, _hash_reset_token(payload.token), dt.datetime.now(dt.timezone.utc)
    )
    if account is None:
        raise ValidationFailed("Invalid or expired reset token")

    account_crud.set_password(db, account, get_password_hash(payload.password))
    return schemas.envelope(message="Password reset successful. You can now login with your new password.")

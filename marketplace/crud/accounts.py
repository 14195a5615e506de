import datetime as dt
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import Forbidden, ValidationFailed
from ..models import Account
from ..pricing import as_utc


def get_account(db: Session, account_id: int) -> Optional[Account]:
    return db.get(Account, account_id)


def get_account_by_email(db: Session, email: str) -> Optional[Account]:
    normalized = (email or "").strip().lower()
    if not normalized:
        return None
    return db.query(Account).filter(func.lower(Account.email) == normalized).first()


def create_account(
    db: Session,
    *,
    name: str,
    email: str,
    hashed_password: str,
    role: str = "buyer",
    phone: Optional[str] = None,
    address: Optional[str] = None,
) -> Account:
    if get_account_by_email(db, email) is not None:
        raise ValidationFailed("User already exists with this email")

    db_account = Account(
        name=name.strip(),
        email=email.strip().lower(),
        hashed_password=hashed_password,
        role=role,
        phone=phone,
        address=address,
    )
    db.add(db_account)
    try:
        db.commit()
    except IntegrityError:
        # DB-level unique constraint (race conditions)
        db.rollback()
        raise ValidationFailed("User already exists with this email")
    db.refresh(db_account)
    return db_account


def list_accounts(
    db: Session, *, role: Optional[str] = None, skip: int = 0, limit: int = 10
) -> Tuple[List[Account], int]:
    query = db.query(Account)
    if role:
        query = query.filter(Account.role == role)
    total = query.count()
    accounts = query.order_by(Account.created_at.desc(), Account.id.desc()).offset(skip).limit(limit).all()
    return accounts, total


def count_accounts(db: Session, role: Optional[str] = None) -> int:
    query = db.query(Account)
    if role:
        query = query.filter(Account.role == role)
    return query.count()


def set_banned(db: Session, account: Account, is_banned: bool) -> Account:
    if account.role == "admin":
        raise Forbidden("Cannot ban admin users")
    account.is_banned = is_banned
    db.commit()
    db.refresh(account)
    return account


def update_profile(db: Session, account: Account, update_data: dict) -> Account:
    for key, value in update_data.items():
        if value is not None:
            setattr(account, key, value)
    db.commit()
    db.refresh(account)
    return account


def set_password(db: Session, account: Account, hashed_password: str) -> Account:
    account.hashed_password = hashed_password
    # Any outstanding reset link dies with the old password.
    account.reset_password_token = None
    account.reset_password_expire = None
    db.commit()
    db.refresh(account)
    return account


def set_reset_token(db: Session, account: Account, token_hash: Optional[str], expires_at: Optional[dt.datetime]) -> None:
    account.reset_password_token = token_hash
    account.reset_password_expire = expires_at
    db.commit()


def get_account_by_reset_token(db: Session, token_hash: str, now: dt.datetime) -> Optional[Account]:
    account = db.query(Account).filter(Account.reset_password_token == token_hash).first()
    if account is None or account.reset_password_expire is None:
        return None

    return account if as_utc(account.reset_password_expire) > as_utc(now) else None

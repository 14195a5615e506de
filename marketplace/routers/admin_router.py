from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import require_roles
from ..crud import accounts as account_crud
from ..crud import stats as stats_crud
from ..database import get_db
from ..errors import NotFound
from ..models import Account

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

admin_only = require_roles(schemas.Role.ADMIN)


@router.get("/users")
def list_all_users(
    role: Optional[schemas.Role] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_admin: Account = Depends(admin_only),
    db: Session = Depends(get_db),
):
    """
    Get list of all users (Admin only)
    """
    users, total = account_crud.list_accounts(
        db, role=role.value if role else None, skip=(page - 1) * limit, limit=limit
    )
    return schemas.envelope(
        {
            "users": [schemas.dump(schemas.AccountOut, u) for u in users],
            "pagination": schemas.Pagination.build(total, page, limit).model_dump(),
        }
    )


@router.patch("/users/{user_id:int}/ban")
def ban_user(
    user_id: int,
    payload: schemas.BanRequest,
    current_admin: Account = Depends(admin_only),
    db: Session = Depends(get_db),
):
    user = account_crud.get_account(db, user_id)
    if user is None:
        raise NotFound("User not found")

    user = account_crud.set_banned(db, user, payload.is_banned)
    logger.info("account.ban_changed", account_id=user.id, is_banned=user.is_banned, by=current_admin.id)
    return schemas.envelope(
        {"user": schemas.dump(schemas.AccountOut, user)},
        message=f"User {'banned' if user.is_banned else 'unbanned'} successfully",
    )


@router.get("/dashboard")
def dashboard(current_admin: Account = Depends(admin_only), db: Session = Depends(get_db)):
    data = stats_crud.admin_dashboard(db)
    data["recent_orders"] = [schemas.dump(schemas.OrderOut, o) for o in data["recent_orders"]]
    return schemas.envelope(data)

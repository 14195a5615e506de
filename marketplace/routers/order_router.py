from fastapi import APIRouter, Depends, status

from .. import schemas
from ..auth import require_roles
from ..deps import get_order_workflow
from ..models import Account
from ..workflow import OrderWorkflow

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: schemas.OrderCreate,
    current_user: Account = Depends(require_roles(schemas.Role.BUYER)),
    workflow: OrderWorkflow = Depends(get_order_workflow),
):
    """Place an order for items from a single seller.

    Prices are locked in at the current effective price and stock is
    decremented in the same transaction. The confirmation mail is sent in
    the background.
    """
    order = workflow.create(
        buyer_id=current_user.id,
        items=payload.items,
        shipping_address=payload.shipping_address,
        payment_method=payload.payment_method.value,
    )
    return schemas.envelope(
        {"order": schemas.dump(schemas.OrderOut, order)},
        message="Order created successfully",
    )

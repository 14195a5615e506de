from decimal import Decimal
from typing import List, Optional, Tuple

import structlog
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import require_roles
from ..crud import orders as order_crud
from ..crud import products as product_crud
from ..crud import stats as stats_crud
from ..database import get_db
from ..deps import get_order_workflow, get_storage
from ..errors import Forbidden, NotFound, ValidationFailed
from ..models import Account, Product
from ..storage import MediaStorage, is_video
from ..workflow import OrderWorkflow

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/seller", tags=["seller"])

seller_only = require_roles(schemas.Role.SELLER)

MAX_IMAGES = 5


def _validated(model, fields: dict):
    # Multipart forms send "" for fields left blank.
    cleaned = {k: v for k, v in fields.items() if v is not None and v != ""}
    try:
        return model(**cleaned)
    except ValidationError as exc:
        raise ValidationFailed(exc.errors()[0]["msg"])


def _store_media(storage: MediaStorage, files: List[UploadFile]) -> Tuple[List[str], Optional[str]]:
    uploads = [f for f in files or [] if f is not None and f.filename]
    if len(uploads) > MAX_IMAGES:
        raise ValidationFailed(f"You can upload at most {MAX_IMAGES} files at once")

    images: List[str] = []
    video: Optional[str] = None
    for upload in uploads:
        if is_video(upload.content_type):
            video = storage.save(
                filename=upload.filename, content_type=upload.content_type, stream=upload.file, field="video"
            )
        else:
            images.append(
                storage.save(
                    filename=upload.filename, content_type=upload.content_type, stream=upload.file, field="images"
                )
            )
    return images, video


def _owned_product(db: Session, product_id: int, seller: Account, action: str) -> Product:
    product = product_crud.get_product(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    if product.seller_id != seller.id:
        raise Forbidden(f"Not authorized to {action} this product")
    return product


@router.get("/dashboard")
def dashboard(current_user: Account = Depends(seller_only), db: Session = Depends(get_db)):
    data = stats_crud.seller_dashboard(db, current_user.id)
    data["recent_orders"] = [schemas.dump(schemas.OrderOut, o) for o in data["recent_orders"]]
    return schemas.envelope(data)


# -----------------------------
# Products
# -----------------------------


@router.get("/products")
def list_my_products(
    is_active: Optional[bool] = Query(None, alias="isActive"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: Account = Depends(seller_only),
    db: Session = Depends(get_db),
):
    products, total = product_crud.list_products(
        db,
        active_only=False,
        is_active=is_active,
        seller_id=current_user.id,
        skip=(page - 1) * limit,
        limit=limit,
    )
    return schemas.envelope(
        {
            "products": [schemas.dump(schemas.ProductOut, p) for p in products],
            "pagination": schemas.Pagination.build(total, page, limit).model_dump(),
        }
    )


@router.post("/products", status_code=status.HTTP_201_CREATED)
def create_product(
    title: str = Form(..., description="**Title** (at least 3 characters)"),
    description: str = Form(..., description="**Description** (at least 10 characters)"),
    category: str = Form(..., description="**Category name**"),
    price: Decimal = Form(..., description="**Price** (must be greater than 0)"),
    stock: int = Form(..., description="**Stock quantity** (must be >= 0)"),
    discount_price: Optional[str] = Form(None),
    discount_end_date: Optional[str] = Form(None),
    is_active: Optional[bool] = Form(None),
    is_hot_collection: Optional[bool] = Form(None),
    features: Optional[str] = Form(None, description="Comma separated"),
    tags: Optional[str] = Form(None, description="Comma separated"),
    brand: Optional[str] = Form(None),
    weight: Optional[str] = Form(None),
    dimensions: Optional[str] = Form(None),
    warranty: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None, description="Up to 5 images; a video may be included"),
    current_user: Account = Depends(seller_only),
    storage: MediaStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    payload = _validated(
        schemas.ProductCreate,
        {
            "title": title,
            "description": description,
            "category": category,
            "price": price,
            "stock": stock,
            "discount_price": discount_price,
            "discount_end_date": discount_end_date,
            "is_active": is_active,
            "is_hot_collection": is_hot_collection,
            "features": features,
            "tags": tags,
            "brand": brand,
            "weight": weight,
            "dimensions": dimensions,
            "warranty": warranty,
        },
    )

    if not any(f is not None and f.filename and not is_video(f.content_type) for f in images or []):
        raise ValidationFailed("At least one image is required")
    image_urls, video_url = _store_media(storage, images)

    product_data = payload.model_dump()
    product_data["features"] = product_data["features"] or []
    product_data["tags"] = product_data["tags"] or []
    product_data["images"] = image_urls
    product_data["video"] = video_url
    product = product_crud.create_product(db, current_user.id, product_data)
    logger.info("product.created", product_id=product.id, seller_id=current_user.id, images=len(image_urls))
    return schemas.envelope(
        {"product": schemas.dump(schemas.ProductOut, product)},
        message="Product created successfully",
    )


@router.put("/products/{product_id:int}")
def update_product(
    product_id: int,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    discount_price: Optional[str] = Form(None),
    discount_end_date: Optional[str] = Form(None),
    is_active: Optional[bool] = Form(None),
    is_hot_collection: Optional[bool] = Form(None),
    features: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    weight: Optional[str] = Form(None),
    dimensions: Optional[str] = Form(None),
    warranty: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    current_user: Account = Depends(seller_only),
    storage: MediaStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    payload = _validated(
        schemas.ProductUpdate,
        {
            "title": title,
            "description": description,
            "category": category,
            "price": price,
            "stock": stock,
            "discount_price": discount_price,
            "discount_end_date": discount_end_date,
            "is_active": is_active,
            "is_hot_collection": is_hot_collection,
            "features": features,
            "tags": tags,
            "brand": brand,
            "weight": weight,
            "dimensions": dimensions,
            "warranty": warranty,
        },
    )
    product = _owned_product(db, product_id, current_user, "update")

    update_data = payload.model_dump(exclude_unset=True)
    # Blank tag/feature fields clear the list.
    if features == "":
        update_data["features"] = []
    if tags == "":
        update_data["tags"] = []

    image_urls, video_url = _store_media(storage, images)
    if image_urls:
        update_data["images"] = list(product.images or []) + image_urls
    if video_url:
        update_data["video"] = video_url

    product = product_crud.update_product(db, product, update_data)
    return schemas.envelope(
        {"product": schemas.dump(schemas.ProductOut, product)},
        message="Product updated successfully",
    )


@router.delete("/products/{product_id:int}")
def delete_product(
    product_id: int,
    current_user: Account = Depends(seller_only),
    db: Session = Depends(get_db),
):
    product = _owned_product(db, product_id, current_user, "delete")
    product_crud.delete_product(db, product)
    logger.info("product.deleted", product_id=product_id, seller_id=current_user.id)
    return schemas.envelope(message="Product deleted successfully")


# -----------------------------
# Orders
# -----------------------------


@router.get("/orders")
def list_orders(
    order_status: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: Account = Depends(seller_only),
    db: Session = Depends(get_db),
):
    orders, total = order_crud.list_orders(
        db,
        seller_id=current_user.id,
        status=order_status.value if order_status else None,
        skip=(page - 1) * limit,
        limit=limit,
    )
    return schemas.envelope(
        {
            "orders": [schemas.dump(schemas.OrderOut, o) for o in orders],
            "pagination": schemas.Pagination.build(total, page, limit).model_dump(),
        }
    )


@router.patch("/orders/{order_id:int}/status")
def update_order_status(
    order_id: int,
    payload: schemas.OrderStatusUpdate,
    current_user: Account = Depends(seller_only),
    workflow: OrderWorkflow = Depends(get_order_workflow),
):
    order = workflow.update_status(order_id, current_user.id, payload.status.value)
    return schemas.envelope(
        {"order": schemas.dump(schemas.OrderOut, order)},
        message="Order status updated successfully",
    )

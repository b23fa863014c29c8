"""Products API router."""
import logging
import os
import shutil
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Path, Query, Request, Response, UploadFile
from opentelemetry import trace
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from store_service.auth import get_current_user, restrict_to
from store_service.config import MAX_UPLOAD_BYTES, MAX_UPLOAD_FILES, UPLOAD_DIR
from store_service.database import get_db
from store_service.errors import ApiError
from store_service.models import MAX_ID, Product, User
from store_service.querying import apply_sort, paginate
from store_service.responses import success
from store_service.schemas import ProductCreate, ProductResponse, ProductUpdate, StockCheckRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

SORTABLE_FIELDS = {
    "created_at": Product.created_at,
    "name": Product.name,
    "price": Product.price,
    "quantity": Product.quantity,
    "category": Product.category,
}

IMAGE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def _active_products(db: Session):
    return db.query(Product).filter(Product.active.is_(True))


def _get_active_product(db: Session, product_id: int) -> Product:
    product = _active_products(db).filter(Product.id == product_id).first()
    if not product:
        raise ApiError("No product found with that ID", 404)
    return product


@router.get("")
async def get_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: Optional[str] = None,
    search: Optional[str] = None,
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    db: Session = Depends(get_db)
):
    """
    List active products.

    Supports filtering by category, featured flag and price range, a
    case-insensitive ``search`` over name, description and category, and
    ``sort`` as a comma separated field list (``-price,name``).
    """
    query = _active_products(db)

    if category:
        query = query.filter(Product.category == category)
    if featured is not None:
        query = query.filter(Product.featured.is_(featured))
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Product.name.ilike(pattern),
            Product.description.ilike(pattern),
            Product.category.ilike(pattern)
        ))

    query = apply_sort(query, sort, SORTABLE_FIELDS).order_by(Product.id.desc())
    products, total, total_pages = paginate(query, page, limit)

    span = trace.get_current_span()
    span.set_attribute("product.count", len(products))

    return success("Products retrieved successfully", {
        "results": len(products),
        "total": total,
        "total_pages": total_pages,
        "current_page": page,
        "products": [ProductResponse.model_validate(p) for p in products],
    })


@router.get("/stats/categories")
async def get_product_stats(
    db: Session = Depends(get_db),
    user: User = Depends(restrict_to("admin"))
):
    """Per-category counts, price range and stock - admin only."""
    count = func.count(Product.id)
    rows = (
        db.query(
            Product.category,
            count,
            func.avg(Product.price),
            func.min(Product.price),
            func.max(Product.price),
            func.sum(Product.quantity)
        )
        .filter(Product.active.is_(True))
        .group_by(Product.category)
        .order_by(count.desc(), Product.category)
        .all()
    )
    stats = [
        {
            "category": category,
            "num_products": num,
            "avg_price": float(avg_price),
            "min_price": float(min_price),
            "max_price": float(max_price),
            "total_quantity": int(total_quantity or 0),
        }
        for category, num, avg_price, min_price, max_price, total_quantity in rows
    ]
    return success("Product statistics retrieved successfully", {"stats": stats})


@router.post("/check-stock")
async def check_product_stock(
    request: StockCheckRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Tell whether the requested quantity is available - requires authentication."""
    product = _get_active_product(db, request.product_id)
    return success("Stock check completed", {
        "product_id": request.product_id,
        "quantity": request.quantity,
        "in_stock": product.is_in_stock(request.quantity),
        "available_quantity": product.quantity,
    })


@router.post("/upload-images")
async def upload_product_images(
    request: Request,
    images: List[UploadFile] = File(default=[]),
    user: User = Depends(restrict_to("admin"))
):
    """Store product images under the uploads directory - admin only."""
    if not images:
        raise ApiError("No images uploaded", 400)
    if len(images) > MAX_UPLOAD_FILES:
        raise ApiError(f"Upload error: at most {MAX_UPLOAD_FILES} images per request", 400)

    target_dir = os.path.join(UPLOAD_DIR, "products")
    os.makedirs(target_dir, exist_ok=True)

    # Every file is checked before any is written
    accepted = []
    for image in images:
        extension = IMAGE_EXTENSIONS.get(image.content_type or "")
        if extension is None:
            raise ApiError(f"Upload error: {image.filename} is not a supported image type", 400)
        if image.size is not None and image.size > MAX_UPLOAD_BYTES:
            raise ApiError(f"Upload error: {image.filename} exceeds {MAX_UPLOAD_BYTES} bytes", 400)
        accepted.append((image, extension))

    image_urls = []
    for image, extension in accepted:
        filename = f"product-{uuid.uuid4().hex}{extension}"
        with open(os.path.join(target_dir, filename), "wb") as out:
            shutil.copyfileobj(image.file, out)
        image_urls.append(f"{str(request.base_url).rstrip('/')}/uploads/products/{filename}")

    logger.info("Product images uploaded", extra={"count": len(image_urls), "user_id": user.id})
    return success("Images uploaded successfully", {"image_urls": image_urls})


@router.get("/{product_id}")
async def get_product(
    product_id: int = Path(..., ge=1, le=MAX_ID, description="Product ID"),
    db: Session = Depends(get_db)
):
    product = _get_active_product(db, product_id)
    return success("Product retrieved successfully", {"product": ProductResponse.model_validate(product)})


@router.post("", status_code=201)
async def create_product(
    request: ProductCreate,
    db: Session = Depends(get_db),
    user: User = Depends(restrict_to("admin"))
):
    """Create a product owned by the calling admin."""
    product = Product(**request.model_dump(), created_by_id=user.id)
    db.add(product)
    db.commit()
    db.refresh(product)

    logger.info("Product created", extra={"product_id": product.id, "user_id": user.id})
    return success("Product created successfully", {"product": ProductResponse.model_validate(product)})


@router.patch("/{product_id}")
async def update_product(
    request: ProductUpdate,
    product_id: int = Path(..., ge=1, le=MAX_ID, description="Product ID"),
    db: Session = Depends(get_db),
    user: User = Depends(restrict_to("admin"))
):
    product = _get_active_product(db, product_id)

    for field, value in request.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)

    return success("Product updated successfully", {"product": ProductResponse.model_validate(product)})


@router.delete("/{product_id}", status_code=204)
async def delete_product(
    product_id: int = Path(..., ge=1, le=MAX_ID, description="Product ID"),
    db: Session = Depends(get_db),
    user: User = Depends(restrict_to("admin"))
):
    """Soft delete: the row stays but drops out of every product query."""
    product = _get_active_product(db, product_id)

    product.active = False
    db.commit()

    logger.info("Product deactivated", extra={"product_id": product_id, "user_id": user.id})
    return Response(status_code=204)

"""Orders API router."""
from typing import Optional
from fastapi import APIRouter, Depends, Header, Path, Query, Request
from sqlalchemy.orm import Session

from store_service.auth import get_current_user, restrict_to
from store_service.database import get_db
from store_service.dependencies import get_order_service
from store_service.models import MAX_ID, User
from store_service.responses import success
from store_service.schemas import OrderCreate, OrderResponse, OrderStatusUpdate
from store_service.services.order_service import OrderService

router = APIRouter(prefix="/api/orders", tags=["orders"])


def _order(order) -> OrderResponse:
    return OrderResponse.model_validate(order)


@router.get("/verify-payment")
async def verify_payment(
    reference: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    """Confirm a payment after the redirect back from the checkout page."""
    order = await order_service.verify_payment(db, reference)
    return success("Payment verified successfully", {"order": _order(order)})


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    """Provider callback; acknowledged whenever the signature checks out."""
    body = await request.body()
    order_service.handle_webhook(db, body, x_paystack_signature)
    return {"received": True}


@router.get("/stats/all")
async def get_order_stats(
    db: Session = Depends(get_db),
    user: User = Depends(restrict_to("admin")),
    order_service: OrderService = Depends(get_order_service)
):
    """Order counts and revenue - admin only."""
    return success("Order statistics retrieved successfully", order_service.get_stats(db))


@router.post("", status_code=201)
async def create_order(
    request: OrderCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Place an order and start the payment - requires authentication."""
    order, payment_url = await order_service.create_order(
        db=db,
        user=user,
        items=request.products,
        shipping_address=request.shipping_address,
        payment_method=request.payment_method
    )
    return success("Order created successfully", {
        "order": _order(order),
        "payment_url": payment_url
    })


@router.get("")
async def get_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    sort: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """List orders: every order for admins, the caller's own otherwise."""
    result = order_service.list_orders(
        db, user,
        page=page,
        limit=limit,
        status=status,
        payment_status=payment_status,
        sort=sort
    )
    result["orders"] = [_order(order) for order in result["orders"]]
    return success("Orders retrieved successfully", result)


@router.get("/{order_id}")
async def get_order(
    order_id: int = Path(..., ge=1, le=MAX_ID, description="Order ID"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    order = order_service.get_order(db, user, order_id)
    return success("Order retrieved successfully", {"order": _order(order)})


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int = Path(..., ge=1, le=MAX_ID, description="Order ID"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    order = order_service.cancel_order(db, user, order_id)
    return success("Order cancelled successfully", {"order": _order(order)})


@router.patch("/{order_id}/status")
async def update_order_status(
    request: OrderStatusUpdate,
    order_id: int = Path(..., ge=1, le=MAX_ID, description="Order ID"),
    db: Session = Depends(get_db),
    user: User = Depends(restrict_to("admin")),
    order_service: OrderService = Depends(get_order_service)
):
    """Set an order's status - admin only."""
    order = order_service.update_status(db, order_id, request.status)
    return success("Order status updated successfully", {"order": _order(order)})

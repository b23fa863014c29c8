"""Dependency injection for services."""
import httpx
from fastapi import Request

from store_service.services.order_service import OrderService
from store_service.services.payment_provider import PaymentProviderClient


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_payment_provider(request: Request) -> PaymentProviderClient:
    """Get payment provider client bound to the shared HTTP client."""
    return PaymentProviderClient(get_http_client(request))


def get_order_service(request: Request) -> OrderService:
    """Get order service instance."""
    return OrderService(get_payment_provider(request))

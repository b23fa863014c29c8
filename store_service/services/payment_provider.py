"""Payment provider communication layer (Paystack-compatible API)."""
import hashlib
import hmac
import httpx
import logging
import time
from typing import Any, Dict, Optional

from store_service.config import PAYSTACK_BASE_URL, PAYSTACK_SECRET_KEY
from store_service.monitoring import payment_provider_duration_histogram

logger = logging.getLogger(__name__)


class PaymentProviderClient:
    """Client for the payment provider's transaction API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = PAYSTACK_BASE_URL,
        secret_key: str = PAYSTACK_SECRET_KEY
    ):
        """
        Initialize payment provider client.

        Args:
            http_client: Shared async HTTP client
            base_url: Provider API root
            secret_key: Secret used for API auth and webhook signatures
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def initialize_transaction(
        self,
        email: str,
        amount: int,
        reference: str,
        callback_url: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Start a hosted checkout.

        Args:
            email: Customer email
            amount: Amount in minor currency units
            reference: Order reference correlating the transaction
            callback_url: Where the provider redirects after payment
            metadata: Extra fields echoed back by the provider

        Returns:
            The provider's ``data`` object (``authorization_url``, ``reference``...)

        Raises:
            httpx.HTTPError: If the provider is unreachable, rejects the call
                or answers with a body that is not a JSON object
        """
        response = await self._request("initialize", "POST", "/transaction/initialize", json={
            "email": email,
            "amount": amount,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata or {},
        })
        return self._data(response)

    async def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """
        Look up the outcome of a transaction.

        Returns:
            The provider's ``data`` object (``status``, ``id``, ``reference``...)

        Raises:
            httpx.HTTPError: If the provider is unreachable, rejects the call
                or answers with a body that is not a JSON object
        """
        response = await self._request("verify", "GET", f"/transaction/verify/{reference}")
        return self._data(response)

    def _data(self, response: httpx.Response) -> Dict[str, Any]:
        """The ``data`` object of a provider reply; unreadable bodies raise ``httpx.DecodingError``."""
        try:
            payload = response.json()
        except ValueError as e:
            logger.error("Payment provider returned a non-JSON body", extra={
                "path": response.request.url.path,
                "status_code": response.status_code
            })
            raise httpx.DecodingError(f"Invalid JSON from payment provider: {e}", request=response.request)
        if not isinstance(payload, dict):
            raise httpx.DecodingError("Unexpected payment provider response", request=response.request)
        return payload.get("data") or {}

    def sign(self, body: bytes) -> str:
        return hmac.new(self.secret_key.encode("utf-8"), body, hashlib.sha512).hexdigest()

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Compare the keyed SHA-512 of the raw body with the signature header."""
        if not signature:
            return False
        return hmac.compare_digest(
            self.sign(body).encode("ascii"),
            signature.encode("utf-8", "surrogateescape")
        )

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        # HTTPXClientInstrumentor already creates spans for HTTP calls
        start_time = time.time()
        status_code = 0
        try:
            response = await self.http_client.request(
                method, f"{self.base_url}{path}", headers=self.headers, **kwargs
            )
            status_code = response.status_code
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            logger.error("Payment provider call failed", extra={
                "operation": operation,
                "path": path,
                "status_code": status_code,
                "error": str(e)
            })
            raise
        finally:
            payment_provider_duration_histogram.record(
                time.time() - start_time,
                {"operation": operation, "status_code": str(status_code)}
            )

"""HTTP client for a remote order service backing the order lifecycle."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, List, Optional

import httpx
from dotenv import load_dotenv

from orderflow.config import Settings
from orderflow.errors import (
    CheckoutError,
    NotAllowedError,
    OrderNotFoundError,
    TransientError,
    ValidationError,
)
from orderflow.models import Order, OrderStatus

logger = logging.getLogger(__name__)

ENV_VAR_API_URL = "ORDERFLOW_API_URL"
ENV_VAR_API_TOKEN = "ORDERFLOW_API_TOKEN"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict):
        return payload.get("message") or payload.get("error") or response.text
    return response.text


class OrderServiceClient:
    """
    Talks to the order REST API (``/orders``).

    Network failures, 5xx and 429 become TransientError and are retried with
    exponential backoff; everything else is a permanent reject raised at once.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or Settings()
        self._sleep = sleep
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.has_token = bool(token)

    @classmethod
    def from_env(cls, *, timeout: float = 10.0, settings: Optional[Settings] = None) -> "OrderServiceClient":
        """Create a client from ORDERFLOW_API_URL / ORDERFLOW_API_TOKEN (.env is honoured)."""
        load_dotenv()
        base_url = os.getenv(ENV_VAR_API_URL)
        if not base_url:
            raise ValidationError(f"Environment variable {ENV_VAR_API_URL} is not set")
        return cls(base_url, token=os.getenv(ENV_VAR_API_TOKEN) or None, timeout=timeout, settings=settings)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "OrderServiceClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientError(f"Network error on {method} {path}: {exc}") from exc

        status = response.status_code
        if status >= 500 or status == httpx.codes.TOO_MANY_REQUESTS:
            raise TransientError(f"Order service returned {status}: {_error_message(response)}", status_code=status)
        if status == httpx.codes.NOT_FOUND:
            raise OrderNotFoundError(_error_message(response) or f"{path} not found")
        if status in (httpx.codes.CONFLICT, httpx.codes.FORBIDDEN):
            raise NotAllowedError(_error_message(response))
        return response

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        attempts = max(1, self._settings.retry_attempts)
        delay = self._settings.retry_backoff
        for attempt in range(1, attempts + 1):
            try:
                return self._send(method, path, **kwargs)
            except TransientError as exc:
                if attempt == attempts:
                    raise
                logger.warning("%s %s failed (attempt %d/%d): %s", method, path, attempt, attempts, exc)
                self._sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code >= 400:
            raise ValidationError(_error_message(response))
        try:
            return response.json()
        except ValueError as exc:
            raise CheckoutError(f"Order service sent invalid JSON: {exc}") from exc

    def list_orders(self) -> List[dict]:
        """GET /orders. Guests (no token or 401) simply have no orders."""
        if not self.has_token:
            return []
        response = self._request("GET", "/orders")
        if response.status_code == httpx.codes.UNAUTHORIZED:
            return []
        return self._json(response)

    def get_order(self, order_id: str) -> dict:
        return self._json(self._request("GET", f"/orders/{order_id}"))

    def create_order(self, order: Order) -> dict:
        if not self.has_token:
            raise ValidationError("You must be logged in to place an order")
        # Same key on every retry, so a POST that landed before a timeout is not placed twice.
        headers = {"Idempotency-Key": order.checkout_id or order.id}
        return self._json(self._request("POST", "/orders", json=order.to_dict(), headers=headers))

    def update_status(self, order_id: str, status: OrderStatus, **extra: Any) -> dict:
        body = {"status": status.value, **extra}
        return self._json(self._request("PUT", f"/orders/{order_id}/status", json=body))

    def cancel_order(self, order_id: str, reason: Optional[str] = None) -> dict:
        if reason:
            return self.update_status(order_id, OrderStatus.CANCELLED, reason=reason)
        return self.update_status(order_id, OrderStatus.CANCELLED)

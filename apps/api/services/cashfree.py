"""Cashfree payment gateway client."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from config import cashfree_base_url, settings
from services.errors import GatewayUnavailable, NetworkTimeout

logger = logging.getLogger(__name__)

GATEWAY_TIMEOUT_SECONDS = 20.0


def gateway_configured() -> bool:
    return bool(settings.CASHFREE_APP_ID.strip() and settings.CASHFREE_SECRET_KEY.strip())


class CashfreeClient:
    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-version": settings.CASHFREE_API_VERSION,
            "x-client-id": settings.CASHFREE_APP_ID,
            "x-client-secret": settings.CASHFREE_SECRET_KEY,
        }

    async def _request(self, method: str, path: str, *, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not gateway_configured():
            raise GatewayUnavailable("CASHFREE_APP_ID or CASHFREE_SECRET_KEY not configured")

        try:
            async with httpx.AsyncClient(
                base_url=cashfree_base_url(),
                timeout=GATEWAY_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise NetworkTimeout("Cashfree request timed out") from exc
        except httpx.HTTPError as exc:
            raise GatewayUnavailable(f"Cashfree request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            logger.error("Cashfree API error %s: %s", response.status_code, response.text[:500])
            raise GatewayUnavailable(f"Cashfree API error (HTTP {response.status_code})")
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayUnavailable("Cashfree returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise GatewayUnavailable("Cashfree returned an unexpected payload")
        return data

    async def create_order(
        self,
        *,
        order_id: str,
        amount: int,
        currency: str,
        customer_id: str,
        customer_email: str,
        note: str,
    ) -> Dict[str, Any]:
        app_url = settings.APP_URL.rstrip("/")
        payload = {
            "order_id": order_id,
            "order_amount": amount,
            "order_currency": currency,
            "customer_details": {
                "customer_id": customer_id,
                "customer_name": customer_email.split("@")[0] or "Studio User",
                "customer_email": customer_email,
                "customer_phone": "9999999999",
            },
            "order_meta": {
                "return_url": f"{app_url}/payment-success?orderId={order_id}",
                "notify_url": f"{app_url}/payments/webhook",
                "payment_methods": "cc,dc,upi,nb",
            },
            "order_note": note,
        }
        return await self._request("POST", "/pg/orders", payload=payload)

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/pg/orders/{order_id}")

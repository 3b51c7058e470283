"""
Delivery booking webhook client
Posts booking requests to the logistics automation webhook
"""
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import httpx

from ..config import settings


class BookingWebhookClient:
    """Client for the delivery booking webhook"""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url or settings.booking_webhook_url
        self.timeout = timeout or settings.booking_webhook_timeout
        self.transport = transport

        if not self.url:
            raise ValueError("Booking webhook URL is required")

    def _request(self, method: str, **kwargs) -> httpx.Response:
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.request(method, self.url, **kwargs)
            response.raise_for_status()
            return response

    def initiate_delivery(self, request_id: str, delivery_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ask the webhook to book a delivery slot.

        Returns:
            Parsed JSON body (may be empty when the webhook returns no body)
        """
        payload = {
            "requestId": request_id,
            "deliveryData": delivery_data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        response = self._request("POST", json=payload)
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

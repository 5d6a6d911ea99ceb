from __future__ import annotations

import logging
import re
from datetime import timezone, tzinfo

import httpx

from .errors import UpstreamUnavailable
from .facilities import Facility
from .yaml_store import Booking

logger = logging.getLogger(__name__)

_NON_DIGIT_RE = re.compile(r"\D")


def normalize_msisdn(number: str) -> str:
    """WhatsApp delivers sender numbers as bare digits, e.g. "27123456789"."""
    return _NON_DIGIT_RE.sub("", number or "")


class WhatsAppNotifier:
    """Sends text messages through the WhatsApp Cloud API."""

    def __init__(
        self,
        token: str | None,
        phone_id: str | None,
        api_base: str = "https://graph.facebook.com/v19.0",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.token = token
        self.phone_id = phone_id
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.token and self.phone_id)

    def send(self, to: str, body: str, phone_id: str | None = None) -> None:
        sender_id = phone_id or self.phone_id
        if not self.token or not sender_id:
            raise UpstreamUnavailable("WhatsApp", "token or phone id not configured")

        recipient = normalize_msisdn(to)
        if not recipient:
            raise ValueError("recipient phone number must contain digits")

        url = f"{self.api_base}/{sender_id}/messages"
        payload = {"messaging_product": "whatsapp", "to": recipient, "text": {"body": body}}
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            if self._client is not None:
                response = self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            raise UpstreamUnavailable("WhatsApp", f"HTTP {error.response.status_code}") from error
        except httpx.HTTPError as error:
            raise UpstreamUnavailable("WhatsApp", str(error) or type(error).__name__) from error

        logger.debug("WhatsApp message sent to %s", recipient)


def format_confirmation(booking: Booking, facility: Facility, tz: tzinfo = timezone.utc) -> str:
    start = booking.start.astimezone(tz)
    end = booking.end.astimezone(tz)
    lines = [
        "Booking confirmed",
        f"Facility: {facility.name}",
        f"Date: {start.strftime('%Y-%m-%d')}",
        f"Time: {start.strftime('%H:%M')} - {end.strftime('%H:%M')}",
    ]
    if facility.has_equipment_checklist and booking.equipment:
        lines.append(f"Equipment: {', '.join(booking.equipment)}")
    lines.append(f"Ref: {booking.booking_id}")
    return "\n".join(lines)

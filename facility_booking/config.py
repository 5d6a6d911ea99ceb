from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Mapping
from zoneinfo import ZoneInfo

LINK_CODE_TTL_MINUTES = 15
DEFAULT_WHATSAPP_API_BASE = "https://graph.facebook.com/v19.0"
DEFAULT_HTTP_TIMEOUT = 10.0


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path("data")
    timezone_name: str = "UTC"
    facilities_file: Path | None = None
    holiday_country: str | None = None
    whatsapp_token: str | None = None
    whatsapp_phone_id: str | None = None
    whatsapp_verify_token: str | None = None
    whatsapp_api_base: str = DEFAULT_WHATSAPP_API_BASE
    inference_url: str | None = None
    inference_token: str | None = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    @property
    def timezone(self) -> tzinfo:
        return resolve_timezone(self.timezone_name)

    @staticmethod
    def from_env(environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _optional(key: str) -> str | None:
            value = str(env.get(key, "")).strip()
            return value or None

        facilities_file = _optional("BOOKING_FACILITIES_FILE")
        timeout_text = _optional("BOOKING_HTTP_TIMEOUT")
        try:
            http_timeout = float(timeout_text) if timeout_text else DEFAULT_HTTP_TIMEOUT
        except ValueError as error:
            raise ValueError(f"BOOKING_HTTP_TIMEOUT must be a number, got {timeout_text!r}") from error

        return Settings(
            data_dir=Path(_optional("BOOKING_DATA_DIR") or "data"),
            timezone_name=_optional("BOOKING_TIMEZONE") or "UTC",
            facilities_file=Path(facilities_file) if facilities_file else None,
            holiday_country=_optional("BOOKING_HOLIDAY_COUNTRY"),
            whatsapp_token=_optional("WHATSAPP_TOKEN"),
            whatsapp_phone_id=_optional("WHATSAPP_PHONE_ID"),
            whatsapp_verify_token=_optional("WHATSAPP_VERIFY_TOKEN"),
            whatsapp_api_base=_optional("WHATSAPP_API_BASE") or DEFAULT_WHATSAPP_API_BASE,
            inference_url=_optional("BOOKING_INFERENCE_URL"),
            inference_token=_optional("BOOKING_INFERENCE_TOKEN"),
            http_timeout=http_timeout,
        )


def resolve_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() in {"UTC", "Z"}:
        return timezone.utc
    return ZoneInfo(name)

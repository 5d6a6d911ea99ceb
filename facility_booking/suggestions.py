from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone, tzinfo
from typing import Any

import httpx

from .errors import InvalidRequest, UpstreamUnavailable
from .facilities import FacilityCatalogue
from .service import BookingRequest, BookingService
from .slots import normalize
from .yaml_store import Booking

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")
REQUIRED_SUGGESTION_FIELDS = ("facility_id", "date", "time")
DEFAULT_PROJECT_NAME = "AI booking"


@dataclass(frozen=True)
class BookingSuggestion:
    facility_id: str | None = None
    date: str | None = None
    time: str | None = None
    project: str | None = None
    error: str | None = None
    problems: list[str] = field(default_factory=list)

    @property
    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_SUGGESTION_FIELDS if getattr(self, name) is None]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields

    def to_dict(self) -> dict[str, Any]:
        return {
            "facility_id": self.facility_id,
            "date": self.date,
            "time": self.time,
            "project": self.project,
            "error": self.error,
            "problems": list(self.problems),
            "missing_fields": self.missing_fields,
            "complete": self.is_complete,
        }


class InferenceClient:
    """HTTP client for the external service that guesses booking fields from free text."""

    def __init__(
        self,
        url: str | None,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client

    def infer(self, prompt: str) -> dict[str, Any]:
        if not self.url:
            raise UpstreamUnavailable("Booking assistant", "inference endpoint not configured")

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            if self._client is not None:
                response = self._client.post(self.url, json={"prompt": prompt}, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.url, json={"prompt": prompt}, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as error:
            raise UpstreamUnavailable("Booking assistant", f"HTTP {error.response.status_code}") from error
        except httpx.HTTPError as error:
            raise UpstreamUnavailable("Booking assistant", str(error) or type(error).__name__) from error
        except ValueError as error:
            raise UpstreamUnavailable("Booking assistant", "response was not JSON") from error

        if not isinstance(payload, dict):
            raise UpstreamUnavailable("Booking assistant", "response was not a JSON object")
        return payload


def normalize_suggestion(raw: Any, catalogue: FacilityCatalogue) -> BookingSuggestion:
    """Validate an untrusted guess field by field; bad fields become None, never a default."""
    if not isinstance(raw, dict):
        return BookingSuggestion(problems=["suggestion is not an object"])

    problems: list[str] = []

    facility_id = _clean_text(raw.get("facility_id"))
    if facility_id is not None:
        facility = catalogue.find(facility_id)
        if facility is None:
            problems.append(f"unknown facility {facility_id!r}")
            facility_id = None
        else:
            facility_id = facility.facility_id

    date_text = _clean_text(raw.get("date"))
    if date_text is not None:
        if not _is_valid_date(date_text):
            problems.append(f"date {date_text!r} is not YYYY-MM-DD")
            date_text = None

    time_text = _clean_text(raw.get("time"))
    if time_text is not None and not _TIME_RE.match(time_text):
        problems.append(f"time {time_text!r} is not HH:MM")
        time_text = None

    return BookingSuggestion(
        facility_id=facility_id,
        date=date_text,
        time=time_text,
        project=_clean_text(raw.get("project")),
        error=_clean_text(raw.get("error")),
        problems=problems,
    )


class SuggestionAdapter:
    """Prefill proposals from free text; booking needs an explicit user confirmation."""

    def __init__(self, client: InferenceClient, service: BookingService, tz: tzinfo = timezone.utc) -> None:
        self.client = client
        self.service = service
        self.tz = tz

    def propose(self, text: str) -> BookingSuggestion:
        if not text or not text.strip():
            raise InvalidRequest("Describe the booking you want to make.", missing_fields=["text"])

        raw = self.client.infer(text.strip())
        suggestion = normalize_suggestion(raw, self.service.catalogue)
        if suggestion.problems:
            logger.info("Assistant suggestion had problems: %s", "; ".join(suggestion.problems))
        return suggestion

    def confirm(
        self,
        owner: str,
        payload: Any,
        confirmed: bool,
        now: datetime | None = None,
    ) -> Booking:
        if confirmed is not True:
            raise InvalidRequest("The suggested booking must be confirmed before it is created.")

        suggestion = normalize_suggestion(payload, self.service.catalogue)
        if not suggestion.is_complete:
            missing = suggestion.missing_fields
            raise InvalidRequest(f"Suggestion is missing: {', '.join(missing)}", missing_fields=missing)

        start, end = normalize(
            date.fromisoformat(suggestion.date),
            time.fromisoformat(suggestion.time),
            tz=self.tz,
        )
        return self.service.create_booking(
            BookingRequest(
                owner=owner,
                facility_id=suggestion.facility_id,
                start_time=start,
                end_time=end,
                project_name=suggestion.project or DEFAULT_PROJECT_NAME,
            ),
            now=now,
        )


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _is_valid_date(text: str) -> bool:
    if not _DATE_RE.match(text):
        return False
    try:
        date.fromisoformat(text)
    except ValueError:
        return False
    return True

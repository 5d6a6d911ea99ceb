from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo

from .errors import BookingError, SlotConflict
from .identity_links import ContactLinkRepository
from .service import BookingRequest, BookingService
from .slots import normalize
from .yaml_store import Booking, ReservationStorageError

logger = logging.getLogger(__name__)

_LINK_RE = re.compile(r"^link\s+(?P<code>\d{6})$", re.IGNORECASE)
_BOOK_RE = re.compile(
    r"^book\s+(?P<facility>\w+)\s+(?P<date>\d{4}-\d{2}-\d{2})\s+(?P<time>\d{2}:\d{2})"
    r"(?:\s+\"(?P<project>[^\"]+)\")?$",
    re.IGNORECASE,
)
_HELP_RE = re.compile(r"^(help|\?)$", re.IGNORECASE)

HELP_TEXT = (
    "Hi! You can use:\n"
    "- link 123456\n"
    '- book <facility> <YYYY-MM-DD> <HH:MM> "Project Name"\n'
    'Example: book studio 2025-09-05 10:00 "Podcast shoot"'
)
UNRECOGNIZED_TEXT = 'Say "help" for commands.'
NOT_LINKED_TEXT = "Phone not linked to any profile. Send: link 123456 (from your dashboard)."


@dataclass(frozen=True)
class ParsedCommand:
    kind: str
    code: str | None = None
    facility: str | None = None
    date: str | None = None
    time: str | None = None
    project: str | None = None


@dataclass(frozen=True)
class CommandReply:
    outcome: str
    text: str
    booking: Booking | None = None


def parse_command(text: str | None) -> ParsedCommand:
    stripped = (text or "").strip()

    match = _LINK_RE.match(stripped)
    if match:
        return ParsedCommand(kind="link", code=match.group("code"))

    match = _BOOK_RE.match(stripped)
    if match:
        return ParsedCommand(
            kind="book",
            facility=match.group("facility").lower(),
            date=match.group("date"),
            time=match.group("time"),
            project=match.group("project"),
        )

    if _HELP_RE.match(stripped):
        return ParsedCommand(kind="help")

    return ParsedCommand(kind="unknown")


class CommandAdapter:
    """Turns short text commands from a messaging channel into service calls."""

    def __init__(
        self,
        service: BookingService,
        links: ContactLinkRepository,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self.service = service
        self.links = links
        self.tz = tz

    def handle(self, contact: str, text: str | None, now: datetime | None = None) -> CommandReply:
        command = parse_command(text)

        if command.kind == "help":
            return CommandReply("help", HELP_TEXT)
        if command.kind == "link":
            return self._link(contact, command, now)
        if command.kind == "book":
            return self._book(contact, command, now)
        return CommandReply("unrecognized", UNRECOGNIZED_TEXT)

    def _link(self, contact: str, command: ParsedCommand, now: datetime | None) -> CommandReply:
        try:
            owner = self.links.confirm(command.code or "", contact, now=now)
        except ValueError:
            return CommandReply("invalid", "Could not read your phone number.")
        except ReservationStorageError:
            logger.exception("Storing contact link failed")
            return CommandReply("failed", "Could not link your phone. Please try again later.")

        if owner is None:
            return CommandReply("invalid", "That link code is invalid or has expired.")
        return CommandReply("linked", "Phone linked. You can now book with: book <facility> <YYYY-MM-DD> <HH:MM>")

    def _book(self, contact: str, command: ParsedCommand, now: datetime | None) -> CommandReply:
        owner = self.links.resolve_owner(contact)
        if owner is None:
            return CommandReply("not_linked", NOT_LINKED_TEXT)

        try:
            day = date.fromisoformat(command.date or "")
            start_at = time.fromisoformat(command.time or "")
        except ValueError:
            return CommandReply("invalid", "That date or time is not valid. Use YYYY-MM-DD and HH:MM.")

        try:
            start, end = normalize(day, start_at, tz=self.tz)
            booking = self.service.create_booking(
                BookingRequest(
                    owner=owner,
                    facility_id=command.facility,
                    start_time=start,
                    end_time=end,
                    project_name=command.project,
                ),
                now=now,
            )
        except SlotConflict:
            return CommandReply("conflict", "That slot is already booked. Try another time.")
        except BookingError as error:
            return CommandReply("invalid", str(error))
        except ReservationStorageError:
            logger.exception("Booking from command channel failed")
            return CommandReply("failed", "Booking failed. Please try again later.")

        return CommandReply(
            "booked",
            f"Booked {command.facility} on {command.date} at {command.time}. See your dashboard for details.",
            booking,
        )

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Iterator
import logging
import shutil
import sys
import threading
import time
from uuid import uuid4

import yaml

from .errors import SlotConflict
from .slots import Interval, day_bounds, overlaps, parse_timestamp, to_utc

if sys.platform != "win32":
    import fcntl
else:
    fcntl = None

logger = logging.getLogger(__name__)

EVENT_BOOKING_CREATED = "BOOKING_CREATED"


@dataclass(frozen=True)
class BookingCandidate:
    facility_id: str
    owner: str
    start: datetime
    end: datetime
    project_name: str | None = None
    notes: str | None = None
    equipment: tuple[str, ...] | None = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)


@dataclass(frozen=True)
class Booking:
    booking_id: str
    facility_id: str
    owner: str
    start: datetime
    end: datetime
    created_at: datetime
    project_name: str | None = None
    notes: str | None = None
    equipment: tuple[str, ...] | None = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.booking_id,
            "facility_id": self.facility_id,
            "owner": self.owner,
            "start_time": self.start.isoformat(timespec="seconds"),
            "end_time": self.end.isoformat(timespec="seconds"),
            "project_name": self.project_name,
            "notes": self.notes,
            "equipment": list(self.equipment) if self.equipment is not None else None,
            "created_at": self.created_at.isoformat(timespec="seconds"),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Booking":
        equipment = data.get("equipment")
        return Booking(
            booking_id=str(data["id"]),
            facility_id=str(data["facility_id"]),
            owner=str(data["owner"]),
            start=parse_timestamp(str(data["start_time"])),
            end=parse_timestamp(str(data["end_time"])),
            created_at=parse_timestamp(str(data["created_at"])),
            project_name=(str(data["project_name"]) if data.get("project_name") is not None else None),
            notes=(str(data["notes"]) if data.get("notes") is not None else None),
            equipment=(tuple(str(item) for item in equipment) if isinstance(equipment, list) else None),
        )


@dataclass(frozen=True)
class BookingEvent:
    sequence: int
    event_type: str
    event_time: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def facility_id(self) -> str | None:
        value = self.payload.get("facility_id")
        return str(value) if value is not None else None


class ReservationStorageError(RuntimeError):
    pass


_DIRECTORY_LOCKS: dict[Path, tuple[threading.RLock, threading.local]] = {}
_DIRECTORY_LOCKS_GUARD = threading.Lock()


def _directory_lock(base_dir: Path) -> tuple[threading.RLock, threading.local]:
    key = base_dir.resolve()
    with _DIRECTORY_LOCKS_GUARD:
        if key not in _DIRECTORY_LOCKS:
            _DIRECTORY_LOCKS[key] = (threading.RLock(), threading.local())
        return _DIRECTORY_LOCKS[key]


class YamlFileStore:
    """Shared plumbing for the YAML files kept under one data directory.

    Every store instance on the same directory shares one re-entrant lock, and
    the outermost holder additionally takes an advisory lock on ``.store.lock``
    so separate processes serialize their writes too.
    """

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.log_file = self.base_dir / "booking_events.yaml"
        self.lock_file = self.base_dir / ".store.lock"
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock, self._lock_state = _directory_lock(self.base_dir)
        self._ensure_files()

    def _data_files(self) -> tuple[Path, ...]:
        return (self.log_file,)

    def _ensure_files(self) -> None:
        with self._locked():
            for path in self._data_files():
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            depth = getattr(self._lock_state, "depth", 0)
            self._lock_state.depth = depth + 1
            try:
                if depth == 0 and fcntl is not None:
                    with self.lock_file.open("a") as handle:
                        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                        yield
                else:
                    yield
            finally:
                self._lock_state.depth = depth

    def _read_yaml_list(self, path: Path, strict: bool = False) -> list[dict[str, Any]]:
        """Read a YAML list of mappings.

        Lenient reads reset a corrupted file (after backing it up) and skip
        non-mapping rows. Strict reads back the file up and raise
        ReservationStorageError instead, leaving the file untouched.
        """
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            return self._handle_corrupted_yaml(path, error, strict)

        if payload is None:
            return []
        if not isinstance(payload, list):
            return self._handle_corrupted_yaml(path, ValueError("top-level YAML is not a list"), strict)

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif strict:
                return self._handle_corrupted_yaml(path, ValueError(f"row {index} is not a mapping"), strict)
            else:
                logger.warning("Skipping non-mapping row %d in %s", index, path.name)
        return sanitized

    def _handle_corrupted_yaml(self, path: Path, error: Exception, strict: bool) -> list[dict[str, Any]]:
        if strict:
            backup_path = self._backup_file(path)
            logger.error("Refusing to write over unreadable %s (backup %s): %s", path, backup_path.name, error)
            raise ReservationStorageError(f"YAML file is unreadable: {path}") from error
        self._recover_corrupted_yaml(path, error)
        return []

    def _backup_file(self, path: Path) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            logger.exception("Could not back up corrupted file %s", path)
        return backup_path

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        with self._locked():
            backup_path = self._backup_file(path)
            path.write_text("[]\n", encoding="utf-8")
        logger.warning("Recovered corrupted YAML file %s (backup %s): %s", path, backup_path.name, error)
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> int:
        timestamp = (event_time or datetime.now(timezone.utc)).isoformat(timespec="seconds")
        with self._locked():
            events = self._read_yaml_list(self.log_file)
            sequence = max((_as_int(row.get("sequence")) for row in events), default=0) + 1
            events.append({"sequence": sequence, "event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)
        return sequence

    def _log_event_quietly(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        try:
            self._log_event(event_type, payload, event_time)
        except ReservationStorageError:
            logger.exception("Could not append %s to %s", event_type, self.log_file.name)

    def read_events(self, after_sequence: int = 0) -> list[BookingEvent]:
        events = []
        for row in self._read_yaml_list(self.log_file):
            sequence = _as_int(row.get("sequence"))
            if sequence <= after_sequence:
                continue
            payload = row.get("payload")
            events.append(
                BookingEvent(
                    sequence=sequence,
                    event_type=str(row.get("event_type", "")),
                    event_time=str(row.get("event_time", "")),
                    payload=payload if isinstance(payload, dict) else {},
                )
            )
        return sorted(events, key=lambda event: event.sequence)


class BookingYamlRepository(YamlFileStore):
    def __init__(self, base_dir: str | Path = "data") -> None:
        self.bookings_file = Path(base_dir) / "bookings.yaml"
        super().__init__(base_dir)

    def _data_files(self) -> tuple[Path, ...]:
        return (self.bookings_file, self.log_file)

    def _load_bookings(self, rows: list[dict[str, Any]] | None = None, strict: bool = False) -> list[Booking]:
        if rows is None:
            rows = self._read_yaml_list(self.bookings_file, strict=strict)
        bookings: list[Booking] = []
        for index, row in enumerate(rows):
            try:
                bookings.append(Booking.from_dict(row))
            except (KeyError, TypeError, ValueError) as error:
                if strict:
                    backup_path = self._backup_file(self.bookings_file)
                    logger.error("Invalid booking row %d (backup %s): %s", index, backup_path.name, error)
                    raise ReservationStorageError(f"invalid booking row {index} in {self.bookings_file}") from error
                logger.warning("Skipping invalid booking row %d in %s: %s", index, self.bookings_file.name, error)
        return bookings

    def insert(self, candidate: BookingCandidate, now: datetime | None = None) -> Booking:
        """Commit a booking unless it overlaps one already stored for the facility.

        The read, the overlap check and the write happen under the store lock,
        so among racing overlapping inserts exactly one commits and every other
        caller receives SlotConflict.

        An unreadable bookings file raises ReservationStorageError rather
        than being reset, since every stored row still guards its interval.
        """
        created_at = to_utc(now) if now is not None else datetime.now(timezone.utc)
        requested = candidate.interval

        with self._locked():
            rows = self._read_yaml_list(self.bookings_file, strict=True)
            existing = [
                booking
                for booking in self._load_bookings(rows, strict=True)
                if booking.facility_id == candidate.facility_id
            ]
            for booking in existing:
                if overlaps(requested, booking.interval):
                    self._log_event_quietly(
                        "BOOKING_REJECTED",
                        {
                            "facility_id": candidate.facility_id,
                            "owner": candidate.owner,
                            "start_time": requested.start.isoformat(timespec="seconds"),
                            "end_time": requested.end.isoformat(timespec="seconds"),
                            "conflicting_booking_id": booking.booking_id,
                        },
                        created_at,
                    )
                    raise SlotConflict(candidate.facility_id, booking.booking_id)

            record = Booking(
                booking_id=str(uuid4()),
                facility_id=candidate.facility_id,
                owner=candidate.owner,
                start=requested.start,
                end=requested.end,
                created_at=created_at,
                project_name=candidate.project_name,
                notes=candidate.notes,
                equipment=candidate.equipment,
            )
            rows.append(record.to_dict())
            self._write_yaml_list(self.bookings_file, rows)

            # the booking row is durable from here on
            self._log_event_quietly(
                EVENT_BOOKING_CREATED,
                {
                    "booking_id": record.booking_id,
                    "facility_id": record.facility_id,
                    "owner": record.owner,
                    "start_time": record.start.isoformat(timespec="seconds"),
                    "end_time": record.end.isoformat(timespec="seconds"),
                },
                created_at,
            )
        return record

    def get(self, booking_id: str) -> Booking | None:
        for booking in self._load_bookings():
            if booking.booking_id == booking_id:
                return booking
        return None

    def list_by_facility(self, facility_id: str) -> list[Booking]:
        rows = [booking for booking in self._load_bookings() if booking.facility_id == facility_id]
        return sorted(rows, key=lambda booking: (booking.start, booking.created_at))

    def list_by_owner(self, owner: str) -> list[Booking]:
        rows = [booking for booking in self._load_bookings() if booking.owner == owner]
        return sorted(rows, key=lambda booking: (booking.start, booking.created_at))

    def list_taken(self, facility_id: str, day: date, tz: tzinfo = timezone.utc) -> list[Interval]:
        """Occupied intervals touching the facility-local day.

        The result is a snapshot for presenting free slots; only insert()
        decides whether a slot can still be claimed.
        """
        window = day_bounds(day, tz)
        return [
            booking.interval
            for booking in self.list_by_facility(facility_id)
            if overlaps(booking.interval, window)
        ]

    def subscribe(self, facility_id: str | None = None, from_start: bool = False) -> "BookingSubscription":
        events = [] if from_start else self.read_events()
        return BookingSubscription(self, facility_id=facility_id, last_seen=events[-1] if events else None)


class BookingSubscription:
    """Poll-based feed of booking creation events.

    Delivery is at-least-once: when the event log is reset the cursor rewinds
    and already-seen events may be delivered again.
    """

    def __init__(
        self,
        repository: YamlFileStore,
        facility_id: str | None = None,
        last_seen: BookingEvent | None = None,
    ) -> None:
        self.repository = repository
        self.facility_id = facility_id
        self.last_seen = last_seen

    @property
    def cursor(self) -> int:
        return self.last_seen.sequence if self.last_seen is not None else 0

    def poll(self) -> list[BookingEvent]:
        events = self.repository.read_events()
        if self.last_seen is not None and self.last_seen not in events:
            # log was reset or rewritten
            self.last_seen = None

        fresh = [event for event in events if event.sequence > self.cursor]
        if fresh:
            self.last_seen = fresh[-1]
        return [
            event
            for event in fresh
            if event.event_type == EVENT_BOOKING_CREATED
            and (self.facility_id is None or event.facility_id == self.facility_id)
        ]

    def listen(self, poll_interval: float = 1.0, timeout: float | None = None) -> Iterator[BookingEvent]:
        deadline = None if timeout is None else time.monotonic() + timeout
        while deadline is None or time.monotonic() < deadline:
            yield from self.poll()
            time.sleep(poll_interval)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0

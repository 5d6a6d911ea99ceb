from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .config import LINK_CODE_TTL_MINUTES
from .notifications import normalize_msisdn
from .slots import parse_timestamp, to_utc
from .yaml_store import YamlFileStore


@dataclass(frozen=True)
class LinkCode:
    code: str
    owner: str
    expires_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "owner": self.owner,
            "expires": self.expires_at.isoformat(timespec="seconds"),
        }


class ContactLinkRepository(YamlFileStore):
    """Pending link codes and confirmed contact-to-owner links.

    A user asks for a code while signed in, then sends "link <code>" from the
    messaging channel; the sender's number is then treated as that owner.
    """

    def __init__(self, base_dir: str | Path = "data", ttl_minutes: int = LINK_CODE_TTL_MINUTES) -> None:
        self.links_file = Path(base_dir) / "contact_links.yaml"
        self.ttl = timedelta(minutes=ttl_minutes)
        super().__init__(base_dir)

    def _data_files(self) -> tuple[Path, ...]:
        return (self.links_file, self.log_file)

    def _read_state(self) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        rows = self._read_yaml_list(self.links_file)
        pending = [row for row in rows if row.get("kind") == "pending"]
        links = [row for row in rows if row.get("kind") == "link"]
        return pending, links

    def issue_code(self, owner: str, now: datetime | None = None) -> LinkCode:
        if not owner or not owner.strip():
            raise ValueError("owner must not be empty")
        effective_now = to_utc(now) if now is not None else datetime.now(timezone.utc)

        with self._locked():
            pending, links = self._read_state()
            pending = [
                row
                for row in pending
                if row.get("owner") != owner and not _is_expired(row, effective_now)
            ]
            taken = {str(row.get("code")) for row in pending}
            code = _generate_code()
            while code in taken:
                code = _generate_code()

            issued = LinkCode(code=code, owner=owner, expires_at=effective_now + self.ttl)
            pending.append({"kind": "pending", **issued.to_dict()})
            self._write_yaml_list(self.links_file, pending + links)
            self._log_event("LINK_CODE_ISSUED", {"owner": owner, "expires": issued.to_dict()["expires"]}, effective_now)
        return issued

    def confirm(self, code: str, contact: str, now: datetime | None = None) -> str | None:
        """Bind the contact to the code's owner; None when the code is unknown or expired."""
        msisdn = normalize_msisdn(contact)
        if not msisdn:
            raise ValueError("contact must contain digits")
        effective_now = to_utc(now) if now is not None else datetime.now(timezone.utc)

        with self._locked():
            pending, links = self._read_state()
            live = [row for row in pending if not _is_expired(row, effective_now)]
            match = next((row for row in live if str(row.get("code")) == code.strip()), None)
            if match is None:
                if len(live) != len(pending):
                    self._write_yaml_list(self.links_file, live + links)
                return None

            owner = str(match["owner"])
            live.remove(match)
            links = [row for row in links if row.get("contact") != msisdn]
            links.append(
                {
                    "kind": "link",
                    "contact": msisdn,
                    "owner": owner,
                    "linked_at": effective_now.isoformat(timespec="seconds"),
                }
            )
            self._write_yaml_list(self.links_file, live + links)
            self._log_event("CONTACT_LINKED", {"owner": owner, "contact": msisdn}, effective_now)
        return owner

    def resolve_owner(self, contact: str) -> str | None:
        msisdn = normalize_msisdn(contact)
        if not msisdn:
            return None
        _pending, links = self._read_state()
        for row in links:
            if row.get("contact") == msisdn:
                return str(row.get("owner"))
        return None


def _generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _is_expired(row: dict[str, Any], now: datetime) -> bool:
    try:
        return parse_timestamp(str(row.get("expires"))) <= now
    except ValueError:
        return True

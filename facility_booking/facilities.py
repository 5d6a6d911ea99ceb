from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml

from .errors import UnknownFacility

STUDIO_EQUIPMENT = ("Camera", "Lighting", "Green Screen", "Teleprompter", "Mics")


@dataclass(frozen=True)
class Facility:
    facility_id: str
    name: str
    description: str = ""
    badges: tuple[str, ...] = ()
    equipment_checklist: tuple[str, ...] = field(default=())

    @property
    def has_equipment_checklist(self) -> bool:
        return bool(self.equipment_checklist)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.facility_id,
            "name": self.name,
            "description": self.description,
            "badges": list(self.badges),
            "equipment_checklist": list(self.equipment_checklist),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Facility":
        facility_id = str(data.get("id") or "").strip().lower()
        if not facility_id:
            raise ValueError("facility entry is missing an id")
        return Facility(
            facility_id=facility_id,
            name=str(data.get("name") or facility_id),
            description=str(data.get("description") or ""),
            badges=tuple(str(badge) for badge in data.get("badges") or []),
            equipment_checklist=tuple(str(item) for item in data.get("equipment_checklist") or []),
        )


DEFAULT_FACILITIES = (
    Facility(
        "ecfilm",
        "EC Film Hub",
        "Production suite for filming, audio capture, lighting, and post.",
        ("4K Camera", "Lighting", "Audio Booth"),
    ),
    Facility(
        "esports",
        "E-Sports & Gaming Club",
        "Gaming events, tournaments, streaming, and esports dev.",
        ("Casting", "Streaming", "Scrims"),
    ),
    Facility(
        "robotics",
        "Robotics & Coding Lab",
        "Prototyping workspace for robotics, sensors, ML, and high-precision electronics.",
        ("Sensors", "Microcontrollers", "Workbenches"),
    ),
    Facility(
        "electronics",
        "Electronics & Hardware Lab",
        "Workbenches and measuring gear for hardware design & testing.",
        ("Oscilloscope", "Soldering", "Bench PSUs"),
    ),
    Facility(
        "arm",
        "ARM Ecosystem Lab",
        "Specialized lab for embedded dev on ARM architectures.",
        ("Dev Boards", "Toolchains", "Debugging"),
    ),
    Facility(
        "automotive",
        "Automotive Ethernet Lab",
        "Test environment for automotive networking & simulation.",
        ("TSN", "Switching", "Simulation"),
    ),
    Facility(
        "baremetal",
        "Bare Metal as a Service Lab",
        "Access on-demand compute nodes and low-level environments.",
        ("Provisioning", "PXE", "IPs"),
    ),
    Facility(
        "studio",
        "Studio Room",
        "Professional recording/mixing with equipment checklist.",
        ("Audio", "Video", "Instruments"),
        STUDIO_EQUIPMENT,
    ),
)


class FacilityCatalogue:
    """Read-only lookup over the configured facilities."""

    def __init__(self, facilities: Iterable[Facility] = DEFAULT_FACILITIES) -> None:
        self._facilities: dict[str, Facility] = {}
        for facility in facilities:
            if facility.facility_id in self._facilities:
                raise ValueError(f"duplicate facility id: {facility.facility_id}")
            self._facilities[facility.facility_id] = facility

    def __iter__(self) -> Iterator[Facility]:
        return iter(self._facilities.values())

    def __len__(self) -> int:
        return len(self._facilities)

    def __contains__(self, facility_id: object) -> bool:
        return isinstance(facility_id, str) and facility_id.strip().lower() in self._facilities

    def ids(self) -> list[str]:
        return list(self._facilities)

    def find(self, facility_id: str | None) -> Facility | None:
        if not isinstance(facility_id, str):
            return None
        return self._facilities.get(facility_id.strip().lower())

    def get(self, facility_id: str | None) -> Facility:
        facility = self.find(facility_id)
        if facility is None:
            raise UnknownFacility(facility_id)
        return facility


def load_catalogue(path: str | Path | None = None) -> FacilityCatalogue:
    if path is None:
        return FacilityCatalogue()

    payload = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("facilities")
    if not isinstance(payload, list) or not payload:
        raise ValueError(f"facility catalogue {path} must contain a non-empty list of facilities")
    return FacilityCatalogue(Facility.from_dict(row) for row in payload if isinstance(row, dict))

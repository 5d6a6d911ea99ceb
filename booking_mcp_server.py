from __future__ import annotations

from datetime import date

from mcp.server.fastmcp import FastMCP

from facility_booking import BookingRequest, BookingService, BookingYamlRepository, InvalidRequest, load_catalogue
from facility_booking.config import Settings
from facility_booking.slots import parse_timestamp

mcp = FastMCP(
    "Facility Booking MCP Server",
    instructions="Expose facility bookings and the conflict-safe booking primitive of the facility_booking project.",
    json_response=True,
)

SETTINGS = Settings.from_env()
CATALOGUE = load_catalogue(SETTINGS.facilities_file)
REPOSITORY = BookingYamlRepository(SETTINGS.data_dir)
SERVICE = BookingService(REPOSITORY, CATALOGUE, tz=SETTINGS.timezone)


@mcp.resource("booking://facilities")
async def list_facilities() -> list[dict]:
    """List bookable facilities and their equipment checklists."""
    return [facility.to_dict() for facility in CATALOGUE]


@mcp.tool()
def list_facility_bookings(facility_id: str) -> list[dict]:
    """Return every booking for a facility ordered by start time."""
    facility = CATALOGUE.get(facility_id)
    return [booking.to_dict() for booking in REPOSITORY.list_by_facility(facility.facility_id)]


@mcp.tool()
def list_taken_slots(facility_id: str, day: str) -> list[dict[str, str]]:
    """Return occupied intervals for a facility-local day (YYYY-MM-DD). Advisory only."""
    facility = CATALOGUE.get(facility_id)
    taken = REPOSITORY.list_taken(facility.facility_id, date.fromisoformat(day), SETTINGS.timezone)
    return [
        {"start_time": interval.start.isoformat(timespec="seconds"), "end_time": interval.end.isoformat(timespec="seconds")}
        for interval in taken
    ]


@mcp.tool()
def create_booking(owner: str, facility_id: str, start_iso: str, end_iso: str, project_name: str | None = None) -> dict:
    """Create a booking using ISO timestamps; fails with SlotConflict when the slot is taken."""
    try:
        start_time = parse_timestamp(start_iso, SETTINGS.timezone)
        end_time = parse_timestamp(end_iso, SETTINGS.timezone)
    except ValueError as error:
        raise InvalidRequest(f"start_iso and end_iso must be ISO-8601 timestamps: {error}") from error

    booking = SERVICE.create_booking(
        BookingRequest(
            owner=owner,
            facility_id=facility_id,
            start_time=start_time,
            end_time=end_time,
            project_name=project_name,
        )
    )
    return booking.to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()

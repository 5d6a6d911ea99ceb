from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from flask import Flask, Response, jsonify, request, stream_with_context

from .admin_view import AdminView
from .commands import CommandAdapter
from .config import Settings
from .errors import BookingError, InvalidRequest, NotAuthorized
from .facilities import FacilityCatalogue, load_catalogue
from .form import BookingForm
from .identity_links import ContactLinkRepository
from .notifications import WhatsAppNotifier
from .service import BookingRequest, BookingService
from .suggestions import InferenceClient, SuggestionAdapter
from .yaml_store import Booking, BookingYamlRepository, ReservationStorageError

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
ROLE_HEADER = "X-User-Role"
ADMIN_ROLE = "admin"


def create_app(
    data_dir: str | Path | None = None,
    settings: Settings | None = None,
    now_provider: Callable[[], datetime] | None = None,
    notifier: WhatsAppNotifier | None = None,
    inference_client: InferenceClient | None = None,
    catalogue: FacilityCatalogue | None = None,
) -> Flask:
    app = Flask(__name__)
    settings = settings or Settings.from_env()
    tz = settings.timezone
    clock: Callable[[], datetime] = now_provider or (lambda: datetime.now(timezone.utc))
    base_dir = Path(data_dir) if data_dir is not None else settings.data_dir

    catalogue = catalogue or load_catalogue(settings.facilities_file)
    repository = BookingYamlRepository(base_dir)
    links = ContactLinkRepository(base_dir)
    notifier = notifier or WhatsAppNotifier(
        settings.whatsapp_token,
        settings.whatsapp_phone_id,
        api_base=settings.whatsapp_api_base,
        timeout=settings.http_timeout,
    )
    inference_client = inference_client or InferenceClient(
        settings.inference_url,
        token=settings.inference_token,
        timeout=settings.http_timeout,
    )

    service = BookingService(repository, catalogue, tz=tz, notifier=notifier)
    form = BookingForm(service, tz=tz, holiday_country=settings.holiday_country)
    commands = CommandAdapter(service, links, tz=tz)
    assistant = SuggestionAdapter(inference_client, service, tz=tz)

    def _serialize_booking(booking: Booking) -> dict[str, Any]:
        payload = booking.to_dict()
        facility = catalogue.find(booking.facility_id)
        payload["facility_name"] = facility.name if facility else booking.facility_id
        return payload

    def _payload() -> dict[str, Any]:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def _require_identity() -> str:
        owner = str(request.headers.get(USER_HEADER, "")).strip()
        if not owner:
            raise _Unauthenticated()
        return owner

    def _is_admin() -> bool:
        return str(request.headers.get(ROLE_HEADER, "")).strip().lower() == ADMIN_ROLE

    def _parse_day(value: Any) -> date:
        try:
            return date.fromisoformat(str(value or "").strip())
        except ValueError as error:
            raise InvalidRequest(f"date must be YYYY-MM-DD, got {value!r}", missing_fields=["date"]) from error

    @app.errorhandler(BookingError)
    def handle_booking_error(error: BookingError) -> Any:
        if error.status_code >= 500:
            logger.warning("%s: %s", error.error_name, error)
        return jsonify({"ok": False, "error": error.error_name, "message": str(error)}), error.status_code

    @app.errorhandler(ReservationStorageError)
    def handle_storage_error(error: ReservationStorageError) -> Any:
        logger.error("Booking storage failure: %s", error)
        return jsonify({"ok": False, "error": "StorageError", "message": "Booking storage is unavailable."}), 500

    @app.errorhandler(_Unauthenticated)
    def handle_unauthenticated(_error: Exception) -> Any:
        return jsonify({"ok": False, "error": "Unauthenticated", "message": "Please sign in first."}), 401

    @app.get("/api/facilities")
    def list_facilities() -> Any:
        return jsonify({"ok": True, "facilities": [facility.to_dict() for facility in catalogue]})

    @app.get("/api/facilities/<facility_id>/taken")
    def list_taken(facility_id: str) -> Any:
        facility = catalogue.get(facility_id)
        day = _parse_day(request.args.get("date"))
        taken = repository.list_taken(facility.facility_id, day, tz)
        return jsonify(
            {
                "ok": True,
                "facility_id": facility.facility_id,
                "date": day.isoformat(),
                "taken": [
                    {
                        "start_time": interval.start.isoformat(timespec="seconds"),
                        "end_time": interval.end.isoformat(timespec="seconds"),
                    }
                    for interval in taken
                ],
            }
        )

    @app.get("/api/facilities/<facility_id>/slots")
    def list_free_slots(facility_id: str) -> Any:
        day = _parse_day(request.args.get("date"))
        hours = form.available_hours(facility_id, day)
        return jsonify(
            {
                "ok": True,
                "facility_id": catalogue.get(facility_id).facility_id,
                "date": day.isoformat(),
                "hours": hours,
                "labels": [f"{hour:02d}:00" for hour in hours],
            }
        )

    @app.post("/api/bookings")
    def create_booking() -> Any:
        booking_request = BookingRequest.from_payload(_payload(), tz)
        booking = service.create_booking(booking_request, now=clock())
        return jsonify({"ok": True, "booking": _serialize_booking(booking)})

    @app.post("/api/form/bookings")
    def submit_form() -> Any:
        owner = _require_identity()
        payload = _payload()
        day = _parse_day(payload.get("date"))
        try:
            hour = int(payload.get("hour"))
        except (TypeError, ValueError) as error:
            raise InvalidRequest("hour must be an integer", missing_fields=["hour"]) from error

        equipment = payload.get("equipment")
        if equipment is not None and not isinstance(equipment, list):
            raise InvalidRequest("equipment must be a list of strings")

        result = form.submit(
            owner,
            str(payload.get("facility_id") or ""),
            day,
            hour,
            project_name=_optional_text(payload.get("project_name")),
            notes=_optional_text(payload.get("notes")),
            equipment=[str(item) for item in equipment] if equipment is not None else None,
            notify_contact=_optional_text(payload.get("notify_contact")),
            now=clock(),
        )
        status_code = {"booked": 200, "conflict": 409}.get(result.status, 400)
        return (
            jsonify(
                {
                    "ok": result.ok,
                    "status": result.status,
                    "message": result.message,
                    "booking": _serialize_booking(result.booking) if result.booking else None,
                    "available_hours": result.available_hours,
                }
            ),
            status_code,
        )

    @app.get("/api/my-bookings")
    def my_bookings() -> Any:
        owner = _require_identity()
        return jsonify({"ok": True, "bookings": [_serialize_booking(row) for row in repository.list_by_owner(owner)]})

    @app.post("/api/link-code")
    def issue_link_code() -> Any:
        owner = _require_identity()
        issued = links.issue_code(owner, now=clock())
        return jsonify({"ok": True, "code": issued.code, "expires": issued.to_dict()["expires"]})

    @app.get("/api/whatsapp/webhook")
    def verify_webhook() -> Any:
        mode = request.args.get("hub.mode")
        token = request.args.get("hub.verify_token")
        challenge = request.args.get("hub.challenge", "")
        if mode == "subscribe" and settings.whatsapp_verify_token and token == settings.whatsapp_verify_token:
            return Response(challenge, status=200, mimetype="text/plain")
        return Response("Forbidden", status=403, mimetype="text/plain")

    @app.post("/api/whatsapp/webhook")
    def receive_webhook() -> Any:
        value = _first_change_value(_payload())
        phone_number_id = _as_dict(value.get("metadata")).get("phone_number_id")
        message = _as_dict(_first_item(value.get("messages")))
        text = _as_dict(message.get("text")).get("body")
        sender = message.get("from")

        if not isinstance(text, str) or not text or not sender or not phone_number_id:
            return jsonify({"ok": True})

        reply = commands.handle(str(sender), str(text), now=clock())
        try:
            notifier.send(str(sender), reply.text, phone_id=str(phone_number_id))
        except (BookingError, ValueError) as error:
            logger.warning("Reply to %s was not delivered: %s", sender, error)
        return jsonify({"ok": True, "outcome": reply.outcome})

    @app.post("/api/assistant/suggest")
    def suggest_booking() -> Any:
        payload = _payload()
        suggestion = assistant.propose(str(payload.get("text") or payload.get("prompt") or ""))
        return jsonify({"ok": True, "suggestion": suggestion.to_dict()})

    @app.post("/api/assistant/confirm")
    def confirm_suggestion() -> Any:
        owner = _require_identity()
        payload = _payload()
        booking = assistant.confirm(owner, payload.get("suggestion"), payload.get("confirmed") is True, now=clock())
        return jsonify({"ok": True, "booking": _serialize_booking(booking)})

    @app.get("/api/admin/bookings")
    def admin_bookings() -> Any:
        view = AdminView(repository, catalogue, _is_admin(), facility_id=request.args.get("facility"))
        return jsonify(
            {
                "ok": True,
                "facility_id": view.facility_id,
                "facilities": catalogue.ids(),
                "bookings": [_serialize_booking(row) for row in view.bookings],
            }
        )

    @app.get("/api/admin/stream")
    def admin_stream() -> Any:
        if not _is_admin():
            raise NotAuthorized("Not authorized")
        facility = catalogue.get(request.args.get("facility") or catalogue.ids()[0])
        subscription = repository.subscribe(facility.facility_id)
        timeout = min(request.args.get("timeout", 300.0, type=float), 3600.0)

        def _events() -> Iterator[str]:
            yield "retry: 5000\n\n"
            for event in subscription.listen(poll_interval=1.0, timeout=timeout):
                yield f"event: booking_created\nid: {event.sequence}\ndata: {event.facility_id}\n\n"

        return Response(stream_with_context(_events()), mimetype="text/event-stream")

    return app


class _Unauthenticated(Exception):
    pass


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_item(value: Any) -> Any:
    return value[0] if isinstance(value, list) and value else None


def _first_change_value(body: dict[str, Any]) -> dict[str, Any]:
    entry = _as_dict(_first_item(body.get("entry")))
    change = _as_dict(_first_item(entry.get("changes")))
    return _as_dict(change.get("value"))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False, threaded=True)

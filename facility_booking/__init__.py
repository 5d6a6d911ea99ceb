from .errors import (
	BookingError,
	InvalidInterval,
	InvalidRequest,
	NotAuthorized,
	SlotConflict,
	UnknownFacility,
	UpstreamUnavailable,
)
from .slots import FORM_HOURS, Interval, normalize, overlaps
from .facilities import Facility, FacilityCatalogue, load_catalogue
from .yaml_store import (
	Booking,
	BookingCandidate,
	BookingEvent,
	BookingSubscription,
	BookingYamlRepository,
	ReservationStorageError,
)
from .service import BookingRequest, BookingService
from .form import BookingForm, FormResult
from .commands import CommandAdapter, CommandReply, parse_command
from .identity_links import ContactLinkRepository, LinkCode
from .suggestions import BookingSuggestion, InferenceClient, SuggestionAdapter, normalize_suggestion
from .admin_view import AdminView

__all__ = [
	"BookingError",
	"InvalidInterval",
	"InvalidRequest",
	"NotAuthorized",
	"SlotConflict",
	"UnknownFacility",
	"UpstreamUnavailable",
	"FORM_HOURS",
	"Interval",
	"normalize",
	"overlaps",
	"Facility",
	"FacilityCatalogue",
	"load_catalogue",
	"Booking",
	"BookingCandidate",
	"BookingEvent",
	"BookingSubscription",
	"BookingYamlRepository",
	"ReservationStorageError",
	"BookingRequest",
	"BookingService",
	"BookingForm",
	"FormResult",
	"CommandAdapter",
	"CommandReply",
	"parse_command",
	"ContactLinkRepository",
	"LinkCode",
	"BookingSuggestion",
	"InferenceClient",
	"SuggestionAdapter",
	"normalize_suggestion",
	"AdminView",
]

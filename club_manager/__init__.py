from .booking import has_conflict, has_time_overlap, overlaps_window, parse_iso_datetime
from .config import ClubSettings, load_settings
from .errors import (
	ClubError,
	ConstraintViolationError,
	ForbiddenError,
	NotFoundError,
	StorageError,
	UnauthorizedError,
	ValidationError,
)
from .models import (
	MemberSpec,
	PerformanceRecord,
	ReservationRecord,
	ResourceRecord,
	SessionSpec,
	TeamMemberRecord,
	TeamRecord,
	TeamSessionRecord,
	TeamSessionView,
	TeamView,
	UserRecord,
)
from .reservations import ReservationManager
from .roster import RosterAllocator, SeatRequest
from .teams import TeamManager
from .yaml_store import ClubYamlStore

__all__ = [
	"has_conflict",
	"has_time_overlap",
	"overlaps_window",
	"parse_iso_datetime",
	"ClubSettings",
	"load_settings",
	"ClubError",
	"ConstraintViolationError",
	"ForbiddenError",
	"NotFoundError",
	"StorageError",
	"UnauthorizedError",
	"ValidationError",
	"MemberSpec",
	"PerformanceRecord",
	"ReservationRecord",
	"ResourceRecord",
	"SessionSpec",
	"TeamMemberRecord",
	"TeamRecord",
	"TeamSessionRecord",
	"TeamSessionView",
	"TeamView",
	"UserRecord",
	"ReservationManager",
	"RosterAllocator",
	"SeatRequest",
	"TeamManager",
	"ClubYamlStore",
]

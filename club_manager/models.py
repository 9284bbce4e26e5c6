from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class ResourceRecord:
    id: int | None
    name: str
    category: str
    is_available: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "is_available": self.is_available,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ResourceRecord":
        return ResourceRecord(
            id=int(data["id"]),
            name=str(data["name"]),
            category=str(data["category"]),
            is_available=bool(data.get("is_available", True)),
        )


@dataclass(frozen=True)
class UserRecord:
    id: int | None
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "UserRecord":
        return UserRecord(id=int(data["id"]), name=str(data["name"]))


@dataclass(frozen=True)
class PerformanceRecord:
    id: int | None
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "PerformanceRecord":
        return PerformanceRecord(id=int(data["id"]), name=str(data["name"]))


@dataclass(frozen=True)
class ReservationRecord:
    id: int | None
    resource_id: int
    title: str
    start: datetime
    end: datetime
    user_ids: tuple[int, ...]
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "title": self.title,
            "start": _format_datetime(self.start),
            "end": _format_datetime(self.end),
            "user_ids": list(self.user_ids),
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        return ReservationRecord(
            id=int(data["id"]),
            resource_id=int(data["resource_id"]),
            title=str(data["title"]),
            start=datetime.fromisoformat(str(data["start"])),
            end=datetime.fromisoformat(str(data["end"])),
            user_ids=tuple(int(user_id) for user_id in data.get("user_ids") or []),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class TeamRecord:
    id: int | None
    performance_id: int
    leader_id: int
    name: str
    song_name: str
    song_artist: str
    description: str | None = None
    poster_image: str | None = None
    song_youtube_video_url: str | None = None
    is_freshmen_fixed: bool = False
    is_self_made: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "performance_id": self.performance_id,
            "leader_id": self.leader_id,
            "name": self.name,
            "song_name": self.song_name,
            "song_artist": self.song_artist,
            "description": self.description,
            "poster_image": self.poster_image,
            "song_youtube_video_url": self.song_youtube_video_url,
            "is_freshmen_fixed": self.is_freshmen_fixed,
            "is_self_made": self.is_self_made,
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TeamRecord":
        return TeamRecord(
            id=int(data["id"]),
            performance_id=int(data["performance_id"]),
            leader_id=int(data["leader_id"]),
            name=str(data["name"]),
            song_name=str(data.get("song_name", "")),
            song_artist=str(data.get("song_artist", "")),
            description=_optional_str(data.get("description")),
            poster_image=_optional_str(data.get("poster_image")),
            song_youtube_video_url=_optional_str(data.get("song_youtube_video_url")),
            is_freshmen_fixed=bool(data.get("is_freshmen_fixed", False)),
            is_self_made=bool(data.get("is_self_made", False)),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


# Descriptive team fields a caller may set on create or patch on update.
TEAM_FIELDS = (
    "name",
    "song_name",
    "song_artist",
    "description",
    "poster_image",
    "song_youtube_video_url",
    "is_freshmen_fixed",
    "is_self_made",
)


@dataclass(frozen=True)
class TeamSessionRecord:
    id: int | None
    team_id: int
    session_id: int
    capacity: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "session_id": self.session_id,
            "capacity": self.capacity,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TeamSessionRecord":
        return TeamSessionRecord(
            id=int(data["id"]),
            team_id=int(data["team_id"]),
            session_id=int(data["session_id"]),
            capacity=int(data["capacity"]),
        )


@dataclass(frozen=True)
class TeamMemberRecord:
    id: int | None
    team_session_id: int
    user_id: int
    index: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team_session_id": self.team_session_id,
            "user_id": self.user_id,
            "index": self.index,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TeamMemberRecord":
        return TeamMemberRecord(
            id=int(data["id"]),
            team_session_id=int(data["team_session_id"]),
            user_id=int(data["user_id"]),
            index=int(data["index"]),
        )


@dataclass(frozen=True)
class MemberSpec:
    user_id: int
    index: int


@dataclass(frozen=True)
class SessionSpec:
    """One session of a trusted bulk roster: capacity plus pre-seated members."""

    session_id: int
    capacity: int
    members: tuple[MemberSpec, ...] = ()


@dataclass(frozen=True)
class TeamSessionView:
    session: TeamSessionRecord
    members: tuple[TeamMemberRecord, ...] = field(default_factory=tuple)

    def occupied_indices(self) -> set[int]:
        return {member.index for member in self.members}

    def to_dict(self) -> dict[str, Any]:
        payload = self.session.to_dict()
        payload["members"] = [member.to_dict() for member in sorted(self.members, key=lambda row: row.index)]
        return payload


@dataclass(frozen=True)
class TeamView:
    team: TeamRecord
    sessions: tuple[TeamSessionView, ...] = field(default_factory=tuple)

    def find_session(self, session_id: int) -> TeamSessionView | None:
        for view in self.sessions:
            if view.session.session_id == session_id:
                return view
        return None

    def member_rows_for(self, user_id: int) -> list[TeamMemberRecord]:
        return [member for view in self.sessions for member in view.members if member.user_id == user_id]

    def to_dict(self) -> dict[str, Any]:
        payload = self.team.to_dict()
        payload["team_sessions"] = [view.to_dict() for view in self.sessions]
        return payload

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from .errors import ConstraintViolationError, ForbiddenError, NotFoundError, StorageError, ValidationError
from .models import TEAM_FIELDS, MemberSpec, SessionSpec, TeamMemberRecord, TeamRecord, TeamSessionRecord, TeamView
from .roster import RosterAllocator, SeatRequest, team_key
from .yaml_store import ClubYamlStore


REQUIRED_TEXT_FIELDS = ("name", "song_name", "song_artist")
OPTIONAL_TEXT_FIELDS = ("description", "poster_image", "song_youtube_video_url")
FLAG_FIELDS = ("is_freshmen_fixed", "is_self_made")


def _normalize_team_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Return the descriptive fields typed as TeamRecord stores them, shared by create and update."""
    unknown = set(fields) - set(TEAM_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported team fields: {sorted(unknown)}")

    normalized: dict[str, Any] = {}
    for name, value in fields.items():
        if name in REQUIRED_TEXT_FIELDS:
            if not isinstance(value, str):
                raise ValidationError(f"{name} must be a string.")
            value = value.strip()
            if name == "name" and not value:
                raise ValidationError("Team name must not be empty.")
        elif name in OPTIONAL_TEXT_FIELDS:
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a string or null.")
        elif name in FLAG_FIELDS and not isinstance(value, bool):
            raise ValidationError(f"{name} must be true or false.")
        normalized[name] = value
    return normalized


def _check_session_specs(sessions: list[SessionSpec]) -> None:
    for spec in sessions:
        if spec.capacity < 1:
            raise ValidationError(f"Session {spec.session_id} capacity must be at least 1.")


class TeamManager:
    """Team lifecycle plus the trusted bulk roster path.

    Rosters handed to ``create`` and ``update`` are written as given, with no
    occupancy or capacity checks; incremental seat changes go through
    :class:`RosterAllocator`.
    """

    def __init__(self, store: ClubYamlStore, allocator: RosterAllocator | None = None) -> None:
        self.store = store
        self.allocator = allocator or RosterAllocator(store)

    def _insert_sessions(self, team_id: int, sessions: list[SessionSpec]) -> list[tuple[TeamSessionRecord, SessionSpec]]:
        created = self.store.insert_many(
            "team_sessions",
            [TeamSessionRecord(id=None, team_id=team_id, session_id=spec.session_id, capacity=spec.capacity) for spec in sessions],
        )
        return list(zip(created, sessions))

    @staticmethod
    def _member_rows(pairs: list[tuple[TeamSessionRecord, SessionSpec]]) -> list[TeamMemberRecord]:
        return [
            TeamMemberRecord(id=None, team_session_id=session.id, user_id=member.user_id, index=member.index)
            for session, spec in pairs
            for member in spec.members
        ]

    def _view(self, team_id: int) -> TeamView:
        view = self.store.load_team_view(team_id)
        if view is None:
            raise NotFoundError(f"Team {team_id} not found.")
        return view

    def create(
        self,
        performance_id: int,
        leader_id: int,
        fields: Mapping[str, Any],
        sessions: Iterable[SessionSpec] = (),
        now: datetime | None = None,
    ) -> TeamView:
        effective_now = now or datetime.now()
        normalized = _normalize_team_fields(fields)
        sessions = list(sessions)
        _check_session_specs(sessions)
        if "name" not in normalized:
            raise ValidationError("Team name is required.")

        if self.store.get("performances", performance_id) is None:
            raise ValidationError(f"Performance {performance_id} does not exist.")
        if self.store.get("users", leader_id) is None:
            raise ValidationError(f"Team leader {leader_id} does not exist.")

        team = self.store.insert(
            "teams",
            TeamRecord(
                id=None,
                performance_id=performance_id,
                leader_id=leader_id,
                name=normalized["name"],
                song_name=normalized.get("song_name", ""),
                song_artist=normalized.get("song_artist", ""),
                description=normalized.get("description"),
                poster_image=normalized.get("poster_image"),
                song_youtube_video_url=normalized.get("song_youtube_video_url"),
                is_freshmen_fixed=normalized.get("is_freshmen_fixed", False),
                is_self_made=normalized.get("is_self_made", False),
                created_at=effective_now,
                updated_at=effective_now,
            ),
        )

        # The team row exists from here on; any failure below removes it again.
        with self.store.transaction(team_key(team.id)):
            try:
                pairs = self._insert_sessions(team.id, sessions)
                self.store.insert_many("team_members", self._member_rows(pairs))
            except ConstraintViolationError as error:
                self._delete_tree(team.id)
                raise ValidationError("Initial roster seats the same slot twice.") from error
            except StorageError:
                self._delete_tree(team.id)
                raise
            view = self._view(team.id)

        self.store.log_event(
            "TEAM_CREATED",
            {"team_id": team.id, "performance_id": performance_id, "leader_id": leader_id, "sessions": len(pairs)},
            effective_now,
        )
        return view

    def get(self, team_id: int) -> TeamView:
        return self._view(team_id)

    def list(self, performance_id: int | None = None) -> list[TeamView]:
        equals = {} if performance_id is None else {"performance_id": performance_id}
        teams = sorted(
            self.store.find("teams", **equals),
            key=lambda team: (team.created_at or datetime.min, team.id),
            reverse=True,
        )
        views = [self.store.load_team_view(team.id) for team in teams]
        return [view for view in views if view is not None]

    def _require_leader(self, team: TeamRecord, caller_id: int, caller_is_admin: bool, action: str) -> None:
        if team.leader_id != caller_id and not caller_is_admin:
            raise ForbiddenError(f"Only the team leader or an admin can {action} this team.")

    def update(
        self,
        team_id: int,
        changes: Mapping[str, Any],
        caller_id: int,
        caller_is_admin: bool,
        sessions: Iterable[SessionSpec] | None = None,
        now: datetime | None = None,
    ) -> TeamView:
        effective_now = now or datetime.now()
        normalized = _normalize_team_fields(changes)
        if sessions is not None:
            sessions = list(sessions)
            _check_session_specs(sessions)

        with self.store.transaction(team_key(team_id)):
            current = self._view(team_id).team
            self._require_leader(current, caller_id, caller_is_admin, "update")

            if sessions is not None:
                self._replace_roster(team_id, sessions)

            self.store.update("teams", replace(current, **normalized, updated_at=effective_now))
            view = self._view(team_id)

        self.store.log_event(
            "TEAM_UPDATED",
            {"team_id": team_id, "changed": sorted(changes), "roster_replaced": sessions is not None},
            effective_now,
        )
        return view

    def _replace_roster(self, team_id: int, sessions: list[SessionSpec]) -> None:
        old_session_ids = {row.id for row in self.store.find("team_sessions", team_id=team_id)}
        pairs = self._insert_sessions(team_id, sessions)
        try:
            self.store.replace_where(
                "team_members",
                lambda row: row.team_session_id in old_session_ids,
                self._member_rows(pairs),
            )
        except ConstraintViolationError as error:
            new_session_ids = {session.id for session, _ in pairs}
            self.store.delete_where("team_sessions", lambda row: row.id in new_session_ids)
            raise ValidationError("Replacement roster seats the same slot twice.") from error
        self.store.delete_where("team_sessions", lambda row: row.id in old_session_ids)

    def _delete_tree(self, team_id: int) -> list[TeamRecord]:
        session_ids = {row.id for row in self.store.find("team_sessions", team_id=team_id)}
        self.store.delete_where("team_members", lambda row: row.team_session_id in session_ids)
        self.store.delete_where("team_sessions", lambda row: row.team_id == team_id)
        return self.store.delete_where("teams", lambda row: row.id == team_id)

    def remove(self, team_id: int, caller_id: int, caller_is_admin: bool) -> TeamRecord:
        with self.store.transaction(team_key(team_id)):
            current = self._view(team_id).team
            self._require_leader(current, caller_id, caller_is_admin, "remove")

            deleted = self._delete_tree(team_id)[0]

        self.store.log_event("TEAM_DELETED", {"team_id": team_id, "by": caller_id})
        return deleted

    def apply(self, team_id: int, user_id: int, assignments: Iterable[SeatRequest | tuple[int, int]]) -> TeamView:
        return self.allocator.apply(team_id, user_id, assignments)

    def leave(self, team_id: int, user_id: int) -> TeamView:
        return self.allocator.leave(team_id, user_id)


def session_specs_from_payload(payload: Iterable[Mapping[str, Any]]) -> list[SessionSpec]:
    """Build bulk roster specs from ``[{session_id, capacity, members: [{user_id, index}]}]``."""
    specs: list[SessionSpec] = []
    for item in payload:
        members = tuple(
            MemberSpec(user_id=int(member["user_id"]), index=int(member["index"])) for member in item.get("members") or []
        )
        specs.append(SessionSpec(session_id=int(item["session_id"]), capacity=int(item["capacity"]), members=members))
    return specs

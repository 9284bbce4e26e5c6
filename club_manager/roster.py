from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .errors import ConstraintViolationError, NotFoundError, ValidationError
from .models import TeamMemberRecord, TeamView
from .yaml_store import ClubYamlStore


@dataclass(frozen=True)
class SeatRequest:
    session_id: int
    index: int


def team_key(team_id: int) -> tuple[str, int]:
    return ("team", team_id)


def validate_seat_requests(view: TeamView, user_id: int, requests: list[SeatRequest]) -> list[TeamMemberRecord]:
    """Check a whole application against current occupancy and capacity.

    Returns the member rows to insert. Raises ValidationError on the first
    bad request, before anything is written.
    """
    if not requests:
        raise ValidationError("Application must name at least one session slot.")

    seen: set[tuple[int, int]] = set()
    for request in requests:
        slot = (request.session_id, request.index)
        if slot in seen:
            raise ValidationError(f"Session {request.session_id} slot {request.index} is requested more than once.")
        seen.add(slot)

    rows: list[TeamMemberRecord] = []
    for request in requests:
        session_view = view.find_session(request.session_id)
        if session_view is None:
            raise ValidationError(f"Session {request.session_id} is not part of this team.")

        if request.index in session_view.occupied_indices():
            raise ValidationError(f"Session {request.session_id} slot {request.index} is already filled.")

        capacity = session_view.session.capacity
        if request.index < 1 or request.index > capacity:
            raise ValidationError(f"Session {request.session_id} capacity exceeded (capacity {capacity}).")

        rows.append(
            TeamMemberRecord(
                id=None,
                team_session_id=session_view.session.id,
                user_id=user_id,
                index=request.index,
            )
        )
    return rows


class RosterAllocator:
    def __init__(self, store: ClubYamlStore) -> None:
        self.store = store

    def _load_team(self, team_id: int) -> TeamView:
        view = self.store.load_team_view(team_id)
        if view is None:
            raise NotFoundError(f"Team {team_id} not found.")
        return view

    def apply(self, team_id: int, user_id: int, assignments: Iterable[SeatRequest | tuple[int, int]]) -> TeamView:
        requests = [item if isinstance(item, SeatRequest) else SeatRequest(*item) for item in assignments]

        with self.store.transaction(team_key(team_id)):
            view = self._load_team(team_id)
            rows = validate_seat_requests(view, user_id, requests)
            try:
                self.store.insert_many("team_members", rows)
            except ConstraintViolationError as error:
                raise ValidationError("Requested slot is already filled.") from error
            refreshed = self._load_team(team_id)

        self.store.log_event(
            "TEAM_APPLIED",
            {
                "team_id": team_id,
                "user_id": user_id,
                "slots": [{"session_id": request.session_id, "index": request.index} for request in requests],
            },
        )
        return refreshed

    def leave(self, team_id: int, user_id: int) -> TeamView:
        with self.store.transaction(team_key(team_id)):
            view = self._load_team(team_id)
            member_ids = {member.id for member in view.member_rows_for(user_id)}
            if not member_ids:
                raise ValidationError(f"User {user_id} is not a member of team {team_id}.")

            self.store.delete_where("team_members", lambda row: row.id in member_ids)
            refreshed = self._load_team(team_id)

        self.store.log_event("TEAM_LEFT", {"team_id": team_id, "user_id": user_id, "removed": len(member_ids)})
        return refreshed

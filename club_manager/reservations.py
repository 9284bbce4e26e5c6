from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from .booking import has_conflict, overlaps_window
from .errors import ConstraintViolationError, ForbiddenError, NotFoundError, ValidationError
from .models import ReservationRecord, ResourceRecord
from .yaml_store import ClubYamlStore

RESERVATION_UPDATE_FIELDS = {"title", "resource_id", "start", "end", "user_ids"}
OVERLAP_MESSAGE = "Reservation overlaps with an existing reservation on this resource."
ROOM_CATEGORY = "ROOM"
RESOURCE_TYPES = {"room", "item"}


def _resource_key(resource_id: int) -> tuple[str, int]:
    return ("resource", resource_id)


def _normalize_user_ids(user_ids: Iterable[int]) -> tuple[int, ...]:
    normalized: list[int] = []
    for user_id in user_ids:
        if user_id not in normalized:
            normalized.append(user_id)
    if not normalized:
        raise ValidationError("A reservation needs at least one participant.")
    return tuple(normalized)


def _validate_interval(start: datetime, end: datetime) -> None:
    if start >= end:
        raise ValidationError("Reservation start time must be earlier than end time.")


class ReservationManager:
    def __init__(self, store: ClubYamlStore) -> None:
        self.store = store

    def _require_bookable_resource(self, resource_id: int) -> ResourceRecord:
        resource = self.store.get("resources", resource_id)
        if resource is None:
            raise NotFoundError(f"Resource {resource_id} does not exist.")
        if not resource.is_available:
            raise ValidationError(f"Resource {resource_id} is not available for reservation.")
        return resource

    def _require_users(self, user_ids: tuple[int, ...]) -> None:
        wanted = set(user_ids)
        found = {user.id for user in self.store.find("users", lambda row: row.id in wanted)}
        missing = sorted(wanted - found)
        if missing:
            raise NotFoundError(f"Unknown participant user ids: {missing}")

    def _ensure_free(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        exclude_reservation_id: int | None = None,
    ) -> None:
        same_resource = self.store.find("reservations", resource_id=resource_id)
        if has_conflict(same_resource, resource_id, start, end, exclude_reservation_id):
            raise ValidationError(OVERLAP_MESSAGE)

    def create(
        self,
        resource_id: int,
        title: str,
        start: datetime,
        end: datetime,
        user_ids: Iterable[int],
        now: datetime | None = None,
    ) -> ReservationRecord:
        effective_now = now or datetime.now()
        _validate_interval(start, end)
        participants = _normalize_user_ids(user_ids)

        with self.store.transaction(_resource_key(resource_id)):
            self._require_bookable_resource(resource_id)
            self._require_users(participants)
            self._ensure_free(resource_id, start, end)

            try:
                created = self.store.insert(
                    "reservations",
                    ReservationRecord(
                        id=None,
                        resource_id=resource_id,
                        title=title,
                        start=start,
                        end=end,
                        user_ids=participants,
                        created_at=effective_now,
                        updated_at=effective_now,
                    ),
                )
            except ConstraintViolationError as error:
                raise ValidationError(OVERLAP_MESSAGE) from error

        self.store.log_event(
            "RESERVATION_CREATED",
            {
                "reservation_id": created.id,
                "resource_id": resource_id,
                "start": start.isoformat(),
                "end": end.isoformat(),
                "user_ids": list(participants),
            },
            effective_now,
        )
        return created

    def list(
        self,
        resource_category: str | None = None,
        resource_id: int | None = None,
        window_from: datetime | None = None,
        window_to: datetime | None = None,
        resource_type: str | None = None,
    ) -> list[ReservationRecord]:
        """List reservations in start order.

        ``resource_type`` is "room" for the ROOM category or "item" for every
        other category; ``resource_category`` matches one category exactly.
        """
        if resource_type is not None and resource_type not in RESOURCE_TYPES:
            raise ValidationError(f"Unknown resource type: {resource_type!r} (expected room or item)")

        category_ids: set[int] | None = None
        if resource_category is not None or resource_type is not None:
            category_ids = {
                resource.id
                for resource in self.store.find("resources")
                if (resource_category is None or resource.category == resource_category)
                and (resource_type is None or (resource.category == ROOM_CATEGORY) == (resource_type == "room"))
            }

        def matches(record: ReservationRecord) -> bool:
            if resource_id is not None and record.resource_id != resource_id:
                return False
            if category_ids is not None and record.resource_id not in category_ids:
                return False
            return overlaps_window(record.start, record.end, window_from, window_to)

        return sorted(self.store.find("reservations", matches), key=lambda record: (record.start, record.id))

    def list_for_user(self, user_id: int) -> list[ReservationRecord]:
        owned = self.store.find("reservations", lambda record: user_id in record.user_ids)
        return sorted(owned, key=lambda record: record.start, reverse=True)

    def get(self, reservation_id: int) -> ReservationRecord:
        record = self.store.get("reservations", reservation_id)
        if record is None:
            raise NotFoundError(f"Reservation {reservation_id} not found.")
        return record

    def _require_participant(self, record: ReservationRecord, caller_id: int, caller_is_admin: bool, action: str) -> None:
        if caller_id not in record.user_ids and not caller_is_admin:
            raise ForbiddenError(f"Only participants or admins can {action} this reservation.")

    def update(
        self,
        reservation_id: int,
        changes: Mapping[str, Any],
        caller_id: int,
        caller_is_admin: bool,
        now: datetime | None = None,
    ) -> ReservationRecord:
        unknown = set(changes) - RESERVATION_UPDATE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported reservation fields: {sorted(unknown)}")

        effective_now = now or datetime.now()
        while True:
            current = self.get(reservation_id)
            self._require_participant(current, caller_id, caller_is_admin, "update")

            keys = {
                _resource_key(current.resource_id),
                _resource_key(changes.get("resource_id", current.resource_id)),
            }
            with self.store.transaction(*keys):
                # Re-read under the lock; a concurrent move can leave the held keys stale.
                current = self.get(reservation_id)
                if _resource_key(current.resource_id) in keys:
                    updated = self._apply_update(current, changes, caller_id, caller_is_admin, effective_now)
                    break

        self.store.log_event(
            "RESERVATION_UPDATED",
            {
                "reservation_id": reservation_id,
                "resource_id": updated.resource_id,
                "start": updated.start.isoformat(),
                "end": updated.end.isoformat(),
                "changed": sorted(changes),
            },
            effective_now,
        )
        return updated

    def _apply_update(
        self,
        current: ReservationRecord,
        changes: Mapping[str, Any],
        caller_id: int,
        caller_is_admin: bool,
        now: datetime,
    ) -> ReservationRecord:
        """Validate and write the merged reservation. Caller holds the resource locks."""
        self._require_participant(current, caller_id, caller_is_admin, "update")

        new_resource_id = changes.get("resource_id", current.resource_id)
        new_start = changes.get("start", current.start)
        new_end = changes.get("end", current.end)
        _validate_interval(new_start, new_end)

        if new_resource_id != current.resource_id:
            self._require_bookable_resource(new_resource_id)

        user_ids = current.user_ids
        if "user_ids" in changes:
            user_ids = _normalize_user_ids(changes["user_ids"])
            self._require_users(user_ids)

        if {"resource_id", "start", "end"} & set(changes):
            self._ensure_free(new_resource_id, new_start, new_end, exclude_reservation_id=current.id)

        updated = replace(
            current,
            resource_id=new_resource_id,
            title=changes.get("title", current.title),
            start=new_start,
            end=new_end,
            user_ids=user_ids,
            updated_at=now,
        )
        try:
            self.store.update("reservations", updated)
        except ConstraintViolationError as error:
            raise ValidationError(OVERLAP_MESSAGE) from error
        return updated

    def remove(self, reservation_id: int, caller_id: int, caller_is_admin: bool) -> ReservationRecord:
        current = self.get(reservation_id)
        self._require_participant(current, caller_id, caller_is_admin, "remove")

        with self.store.transaction(_resource_key(current.resource_id)):
            deleted = self.store.delete_where("reservations", lambda row: row.id == reservation_id)
        if not deleted:
            raise NotFoundError(f"Reservation {reservation_id} not found.")

        self.store.log_event(
            "RESERVATION_DELETED",
            {"reservation_id": reservation_id, "resource_id": current.resource_id, "by": caller_id},
        )
        return deleted[0]

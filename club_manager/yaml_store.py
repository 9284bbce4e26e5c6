from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Hashable, Iterator
import shutil
import threading

import yaml

from .booking import has_time_overlap
from .errors import ConstraintViolationError, StorageError
from .models import (
    PerformanceRecord,
    ReservationRecord,
    ResourceRecord,
    TeamMemberRecord,
    TeamRecord,
    TeamSessionRecord,
    TeamSessionView,
    TeamView,
    UserRecord,
)

TABLES: dict[str, Any] = {
    "resources": ResourceRecord,
    "users": UserRecord,
    "performances": PerformanceRecord,
    "reservations": ReservationRecord,
    "teams": TeamRecord,
    "team_sessions": TeamSessionRecord,
    "team_members": TeamMemberRecord,
}

UNIQUE_CONSTRAINTS: dict[str, dict[str, tuple[str, ...]]] = {
    "team_members": {"uq_team_member_slot": ("team_session_id", "index")},
}


def _reservations_collide(candidate: ReservationRecord, existing: ReservationRecord) -> bool:
    if candidate.resource_id != existing.resource_id:
        return False
    return has_time_overlap(candidate.start, candidate.end, existing.start, existing.end)


EXCLUSION_CONSTRAINTS: dict[str, dict[str, Callable[[Any, Any], bool]]] = {
    "reservations": {"ex_reservation_no_overlap": _reservations_collide},
}

EVENT_LOG_NAME = "events"
SEQUENCE_FILE_NAME = "sequences"


@dataclass
class _StoreLocks:
    """Locks shared by every store instance opened on the same data directory."""

    tables: dict[str, threading.RLock] = field(default_factory=lambda: {name: threading.RLock() for name in TABLES})
    events: threading.RLock = field(default_factory=threading.RLock)
    sequences: threading.Lock = field(default_factory=threading.Lock)
    keys: dict[Hashable, threading.RLock] = field(default_factory=dict)
    registry: threading.Lock = field(default_factory=threading.Lock)

    def key_lock(self, key: Hashable) -> threading.RLock:
        with self.registry:
            lock = self.keys.get(key)
            if lock is None:
                lock = threading.RLock()
                self.keys[key] = lock
            return lock


_LOCKS_BY_DIR: dict[Path, _StoreLocks] = {}
_LOCKS_GUARD = threading.Lock()


def _locks_for(base_dir: Path) -> _StoreLocks:
    resolved = base_dir.resolve()
    with _LOCKS_GUARD:
        locks = _LOCKS_BY_DIR.get(resolved)
        if locks is None:
            locks = _StoreLocks()
            _LOCKS_BY_DIR[resolved] = locks
        return locks


class ClubYamlStore:
    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.log_file = self.base_dir / f"{EVENT_LOG_NAME}.yaml"
        self.sequence_file = self.base_dir / f"{SEQUENCE_FILE_NAME}.yaml"
        self._ensure_files()
        self._locks = _locks_for(self.base_dir)

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in [self._table_path(name) for name in TABLES] + [self.log_file, self.sequence_file]:
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    def _table_path(self, table: str) -> Path:
        if table not in TABLES:
            raise StorageError(f"Unknown table: {table}")
        return self.base_dir / f"{table}.yaml"

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path != self.log_file:
                self.log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise StorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        backup_name: str | None = backup_path.name
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            # Reset anyway; the event records that no backup was kept.
            backup_name = None

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self.log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": backup_name,
                    "reason": str(error),
                },
            )

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        with self._locks.events:
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def read_events(self) -> list[dict[str, Any]]:
        with self._locks.events:
            return self._read_yaml_list(self.log_file)

    @contextmanager
    def transaction(self, *keys: Hashable) -> Iterator["ClubYamlStore"]:
        """Hold the locks for ``keys`` across a read-validate-write sequence.

        Locks are taken in a stable order so two callers naming overlapping
        key sets cannot deadlock. Keys are re-entrant within one thread.
        """
        ordered = sorted(set(keys), key=repr)
        locks = [self._locks.key_lock(key) for key in ordered]
        acquired: list[threading.RLock] = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield self
        finally:
            for lock in reversed(acquired):
                lock.release()

    def _load(self, table: str) -> list[Any]:
        model = TABLES[table]
        return [model.from_dict(row) for row in self._read_yaml_list(self._table_path(table))]

    def _save(self, table: str, records: list[Any]) -> None:
        self._write_yaml_list(self._table_path(table), [record.to_dict() for record in records])

    def _last_issued_id(self, table: str) -> int:
        with self._locks.sequences:
            for row in self._read_yaml_list(self.sequence_file):
                if row.get("table") == table:
                    return int(row.get("last_id", 0))
        return 0

    def _next_id(self, table: str, rows: list[Any]) -> int:
        # Ids are never reused, even after the newest row is deleted.
        return max(self._last_issued_id(table), max((row.id for row in rows), default=0)) + 1

    def _advance_sequence(self, table: str, last_id: int) -> None:
        with self._locks.sequences:
            sequences = [row for row in self._read_yaml_list(self.sequence_file) if row.get("table") != table]
            sequences.append({"table": table, "last_id": last_id})
            self._write_yaml_list(self.sequence_file, sequences)

    def get(self, table: str, record_id: int) -> Any | None:
        with self._locks.tables[table]:
            for record in self._load(table):
                if record.id == record_id:
                    return record
        return None

    def find(self, table: str, predicate: Callable[[Any], bool] | None = None, **equals: Any) -> list[Any]:
        with self._locks.tables[table]:
            records = self._load(table)

        matched: list[Any] = []
        for record in records:
            if any(getattr(record, name) != value for name, value in equals.items()):
                continue
            if predicate is not None and not predicate(record):
                continue
            matched.append(record)
        return matched

    def insert(self, table: str, record: Any) -> Any:
        return self.insert_many(table, [record])[0]

    def insert_many(self, table: str, records: list[Any]) -> list[Any]:
        """Insert every record with one write, or none of them on a constraint hit."""
        return self.replace_where(table, None, records)

    def replace_where(self, table: str, predicate: Callable[[Any], bool] | None, records: list[Any]) -> list[Any]:
        """Drop rows matching ``predicate`` and insert ``records`` in a single write."""
        with self._locks.tables[table]:
            rows = self._load(table)
            existing = [row for row in rows if predicate is None or not predicate(row)]
            next_id = self._next_id(table, rows)

            created: list[Any] = []
            for record in records:
                stored = replace(record, id=next_id)
                next_id += 1
                self._check_constraints(table, stored, existing + created)
                created.append(stored)

            if created or len(existing) != len(rows):
                self._save(table, existing + created)
            if created:
                self._advance_sequence(table, created[-1].id)
        return created

    def update(self, table: str, record: Any) -> Any:
        with self._locks.tables[table]:
            rows = self._load(table)
            found_index = -1
            for index, row in enumerate(rows):
                if row.id == record.id:
                    found_index = index
                    break

            if found_index < 0:
                raise StorageError(f"{table} record {record.id} not found")

            others = rows[:found_index] + rows[found_index + 1:]
            self._check_constraints(table, record, others)
            rows[found_index] = record
            self._save(table, rows)
        return record

    def delete(self, table: str, record_id: int) -> Any:
        deleted = self.delete_where(table, lambda row: row.id == record_id)
        if not deleted:
            raise StorageError(f"{table} record {record_id} not found")
        return deleted[0]

    def delete_where(self, table: str, predicate: Callable[[Any], bool]) -> list[Any]:
        with self._locks.tables[table]:
            rows = self._load(table)
            kept = [row for row in rows if not predicate(row)]
            deleted = [row for row in rows if predicate(row)]
            if deleted:
                self._save(table, kept)
        return deleted

    def _check_constraints(self, table: str, candidate: Any, others: list[Any]) -> None:
        for name, columns in UNIQUE_CONSTRAINTS.get(table, {}).items():
            key = tuple(getattr(candidate, column) for column in columns)
            if any(row.id != candidate.id and tuple(getattr(row, column) for column in columns) == key for row in others):
                self._raise_violation(table, name, f"{table} already holds {dict(zip(columns, key))}")

        for name, collides in EXCLUSION_CONSTRAINTS.get(table, {}).items():
            if any(row.id != candidate.id and collides(candidate, row) for row in others):
                self._raise_violation(table, name, f"{table} record overlaps an existing row")

    def _raise_violation(self, table: str, constraint: str, message: str) -> None:
        self.log_event("CONSTRAINT_VIOLATION", {"table": table, "constraint": constraint, "reason": message})
        raise ConstraintViolationError(table, constraint, message)

    def load_team_view(self, team_id: int) -> TeamView | None:
        team = self.get("teams", team_id)
        if team is None:
            return None

        sessions = sorted(self.find("team_sessions", team_id=team_id), key=lambda row: row.id)
        session_ids = {session.id for session in sessions}
        members = self.find("team_members", lambda row: row.team_session_id in session_ids)

        grouped: dict[int, list[TeamMemberRecord]] = {session.id: [] for session in sessions}
        for member in members:
            grouped[member.team_session_id].append(member)

        return TeamView(
            team=team,
            sessions=tuple(TeamSessionView(session=session, members=tuple(grouped[session.id])) for session in sessions),
        )

import tempfile
import threading
import unittest
from datetime import datetime
from pathlib import Path

from club_manager import (
    ClubYamlStore,
    ConstraintViolationError,
    ReservationRecord,
    ResourceRecord,
    StorageError,
    TeamMemberRecord,
    TeamRecord,
    TeamSessionRecord,
)


def _reservation(resource_id: int, start_hour: int, end_hour: int) -> ReservationRecord:
    return ReservationRecord(
        id=None,
        resource_id=resource_id,
        title="합주",
        start=datetime(2026, 3, 2, start_hour, 0),
        end=datetime(2026, 3, 2, end_hour, 0),
        user_ids=(1, 2),
    )


class TestClubYamlStore(unittest.TestCase):
    def setUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        self.data_dir = Path(temp_dir.name) / "data"
        self.store = ClubYamlStore(self.data_dir)

    def test_creates_table_files(self) -> None:
        for name in ("resources", "users", "reservations", "teams", "team_sessions", "team_members", "events"):
            self.assertTrue((self.data_dir / f"{name}.yaml").exists())

    def test_insert_assigns_increasing_ids_and_round_trips(self) -> None:
        first = self.store.insert("resources", ResourceRecord(id=None, name="합주실", category="ROOM"))
        second = self.store.insert("resources", ResourceRecord(id=None, name="베이스 앰프", category="AMP"))

        self.assertEqual(first.id, 1)
        self.assertEqual(second.id, 2)

        reopened = ClubYamlStore(self.data_dir)
        self.assertEqual(reopened.get("resources", 2), second)
        self.assertEqual(reopened.find("resources", category="ROOM"), [first])

    def test_ids_are_not_reused_after_delete(self) -> None:
        self.store.insert("resources", ResourceRecord(id=None, name="합주실", category="ROOM"))
        latest = self.store.insert("resources", ResourceRecord(id=None, name="드럼", category="DRUM"))
        self.store.delete("resources", latest.id)

        replacement = self.store.insert("resources", ResourceRecord(id=None, name="키보드", category="KEYBOARD"))
        self.assertEqual(replacement.id, 3)

    def test_reservation_round_trip_keeps_datetimes_and_participants(self) -> None:
        created = self.store.insert("reservations", _reservation(1, 14, 16))
        loaded = ClubYamlStore(self.data_dir).get("reservations", created.id)

        self.assertEqual(loaded.start, datetime(2026, 3, 2, 14, 0))
        self.assertEqual(loaded.end, datetime(2026, 3, 2, 16, 0))
        self.assertEqual(loaded.user_ids, (1, 2))

    def test_exclusion_constraint_rejects_overlapping_reservation(self) -> None:
        self.store.insert("reservations", _reservation(1, 14, 16))

        with self.assertRaises(ConstraintViolationError) as context:
            self.store.insert("reservations", _reservation(1, 15, 17))
        self.assertEqual(context.exception.constraint, "ex_reservation_no_overlap")

        self.store.insert("reservations", _reservation(1, 16, 18))
        self.store.insert("reservations", _reservation(2, 15, 17))
        self.assertEqual(len(self.store.find("reservations")), 3)

    def test_update_is_checked_against_other_rows_only(self) -> None:
        first = self.store.insert("reservations", _reservation(1, 14, 16))
        self.store.insert("reservations", _reservation(1, 16, 18))

        moved = self.store.update(
            "reservations",
            ReservationRecord(
                id=first.id,
                resource_id=1,
                title=first.title,
                start=datetime(2026, 3, 2, 13, 0),
                end=datetime(2026, 3, 2, 15, 0),
                user_ids=first.user_ids,
            ),
        )
        self.assertEqual(self.store.get("reservations", first.id), moved)

        with self.assertRaises(ConstraintViolationError):
            self.store.update(
                "reservations",
                ReservationRecord(
                    id=first.id,
                    resource_id=1,
                    title=first.title,
                    start=datetime(2026, 3, 2, 15, 0),
                    end=datetime(2026, 3, 2, 17, 0),
                    user_ids=first.user_ids,
                ),
            )

    def test_update_missing_record_raises_storage_error(self) -> None:
        with self.assertRaises(StorageError):
            self.store.update("resources", ResourceRecord(id=99, name="없음", category="ROOM"))

    def test_insert_many_is_all_or_nothing(self) -> None:
        rows = [
            TeamMemberRecord(id=None, team_session_id=1, user_id=7, index=1),
            TeamMemberRecord(id=None, team_session_id=1, user_id=8, index=2),
            TeamMemberRecord(id=None, team_session_id=1, user_id=9, index=1),
        ]

        with self.assertRaises(ConstraintViolationError):
            self.store.insert_many("team_members", rows)
        self.assertEqual(self.store.find("team_members"), [])

    def test_replace_where_swaps_rows_in_one_write(self) -> None:
        self.store.insert_many(
            "team_members",
            [
                TeamMemberRecord(id=None, team_session_id=1, user_id=7, index=1),
                TeamMemberRecord(id=None, team_session_id=2, user_id=8, index=1),
            ],
        )

        created = self.store.replace_where(
            "team_members",
            lambda row: row.team_session_id == 1,
            [TeamMemberRecord(id=None, team_session_id=1, user_id=9, index=1)],
        )

        remaining = self.store.find("team_members")
        self.assertEqual({(row.team_session_id, row.user_id) for row in remaining}, {(1, 9), (2, 8)})
        self.assertEqual(created[0].user_id, 9)

    def test_load_team_view_groups_members_by_session(self) -> None:
        team = self.store.insert(
            "teams",
            TeamRecord(id=None, performance_id=1, leader_id=1, name="밴드", song_name="곡", song_artist="가수"),
        )
        guitar, drums = self.store.insert_many(
            "team_sessions",
            [
                TeamSessionRecord(id=None, team_id=team.id, session_id=1, capacity=2),
                TeamSessionRecord(id=None, team_id=team.id, session_id=2, capacity=1),
            ],
        )
        self.store.insert_many(
            "team_members",
            [
                TeamMemberRecord(id=None, team_session_id=guitar.id, user_id=3, index=1),
                TeamMemberRecord(id=None, team_session_id=drums.id, user_id=4, index=1),
            ],
        )

        view = self.store.load_team_view(team.id)

        self.assertIsNotNone(view)
        self.assertEqual([session.session.session_id for session in view.sessions], [1, 2])
        self.assertEqual(view.find_session(1).occupied_indices(), {1})
        self.assertEqual([member.user_id for member in view.member_rows_for(4)], [4])
        self.assertIsNone(self.store.load_team_view(999))

    def test_recovers_corrupted_yaml_and_logs_event(self) -> None:
        (self.data_dir / "resources.yaml").write_text("- [unclosed\n", encoding="utf-8")

        self.assertEqual(self.store.find("resources"), [])

        backups = list(self.data_dir.glob("resources.corrupt.*.yaml"))
        self.assertEqual(len(backups), 1)
        event_types = [event["event_type"] for event in self.store.read_events()]
        self.assertIn("YAML_RECOVERED", event_types)

    def test_skips_non_mapping_rows(self) -> None:
        (self.data_dir / "resources.yaml").write_text(
            "- id: 1\n  name: 합주실\n  category: ROOM\n  is_available: true\n- just a string\n",
            encoding="utf-8",
        )

        records = self.store.find("resources")

        self.assertEqual(len(records), 1)
        event_types = [event["event_type"] for event in self.store.read_events()]
        self.assertIn("YAML_ROW_SKIPPED", event_types)

    def test_constraint_violation_is_logged(self) -> None:
        self.store.insert("reservations", _reservation(1, 14, 16))
        with self.assertRaises(ConstraintViolationError):
            self.store.insert("reservations", _reservation(1, 14, 16))

        events = [event for event in self.store.read_events() if event["event_type"] == "CONSTRAINT_VIOLATION"]
        self.assertEqual(events[0]["payload"]["table"], "reservations")

    def test_transaction_serializes_holders_of_the_same_key(self) -> None:
        entered = threading.Event()
        release = threading.Event()
        order: list[str] = []

        def holder() -> None:
            with self.store.transaction(("resource", 1)):
                entered.set()
                release.wait(timeout=5)
                order.append("holder")

        def contender() -> None:
            with ClubYamlStore(self.data_dir).transaction(("resource", 1)):
                order.append("contender")

        first = threading.Thread(target=holder)
        first.start()
        self.assertTrue(entered.wait(timeout=5))

        second = threading.Thread(target=contender)
        second.start()
        second.join(timeout=0.2)
        self.assertTrue(second.is_alive())

        release.set()
        first.join(timeout=5)
        second.join(timeout=5)
        self.assertEqual(order, ["holder", "contender"])

    def test_transaction_on_other_key_does_not_block(self) -> None:
        with self.store.transaction(("resource", 1)):
            done = threading.Event()

            def other() -> None:
                with self.store.transaction(("resource", 2)):
                    done.set()

            worker = threading.Thread(target=other)
            worker.start()
            worker.join(timeout=5)
            self.assertTrue(done.is_set())


if __name__ == "__main__":
    unittest.main()

import threading
from datetime import date, datetime, time

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from pubapp.database import Base, make_engine
from pubapp.models.activity_log import ActivityLogEntry
from pubapp.models.reservation import Reservation
from pubapp.models.room import Room
from pubapp.models.table import Table
from pubapp.services import booking
from pubapp.utils.exceptions import ConflictError, NotFoundError, StateError, ValidationError

NOW = datetime(2025, 8, 1, 12, 0)
D = date(2025, 8, 26)


def _payload(table, **overrides):
    data = {
        "table_id": table.id,
        "guest_name": "Giulia Bianchi",
        "guest_phone": "+39 333 1234567",
        "party_size": 3,
        "reservation_date": "2025-08-26",
        "reservation_time": "19:00",
        "duration_hours": 2,
        "created_by": "Luca",
    }
    data.update(overrides)
    return data


def _logs(db, reservation_id):
    return db.query(ActivityLogEntry).filter(ActivityLogEntry.reservation_id == reservation_id).all()


class TestCreate:
    def test_creates_active_reservation(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        assert reservation.id is not None
        assert reservation.status == "active"
        assert reservation.reservation_time == time(19, 0)
        assert reservation.duration_hours == 2
        assert reservation.created_by == "Luca"

    def test_default_duration_is_two_hours(self, db, table):
        data = _payload(table)
        del data["duration_hours"]
        assert booking.create_reservation(db, data, now=NOW).duration_hours == 2

    def test_indefinite_duration(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, duration_hours=-1), now=NOW)
        assert reservation.is_indefinite

    def test_missing_fields(self, db, table):
        with pytest.raises(ValidationError) as exc_info:
            booking.create_reservation(db, {"table_id": table.id}, now=NOW)
        assert {"guest_name", "party_size", "reservation_date", "reservation_time"} <= set(exc_info.value.errors)

    @pytest.mark.parametrize("overrides,field", [
        ({"party_size": 5}, "party_size"),
        ({"party_size": 0}, "party_size"),
        ({"reservation_time": "19:10"}, "reservation_time"),
        ({"reservation_time": "03:00"}, "reservation_time"),
        ({"duration_hours": 13}, "duration_hours"),
        ({"duration_hours": 0}, "duration_hours"),
        ({"reservation_date": "2025-07-31"}, "reservation_date"),
        ({"guest_name": "   "}, "guest_name"),
        ({"party_size": 2.7}, "party_size"),
        ({"party_size": True}, "party_size"),
        ({"party_size": "tre"}, "party_size"),
        ({"table_id": True}, "table_id"),
    ])
    def test_rejects_invalid_input(self, db, table, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            booking.create_reservation(db, _payload(table, **overrides), now=NOW)
        assert field in exc_info.value.errors
        assert db.query(Reservation).count() == 0

    def test_rejects_inactive_or_unknown_table(self, db, tables):
        with pytest.raises(ValidationError) as exc_info:
            booking.create_reservation(db, _payload(tables["B9"]), now=NOW)
        assert "table_id" in exc_info.value.errors
        with pytest.raises(ValidationError):
            booking.create_reservation(db, _payload(tables["A1"], table_id=999), now=NOW)

    @pytest.mark.parametrize("party_size", ["3", 3.0])
    def test_integral_party_size_is_accepted(self, db, table, party_size):
        assert booking.create_reservation(db, _payload(table, party_size=party_size), now=NOW).party_size == 3

    def test_today_is_not_in_the_past(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, reservation_date="2025-08-01"), now=NOW)
        assert reservation.reservation_date == date(2025, 8, 1)


class TestConflicts:
    def test_overlap_retries_then_raises_table_unavailable(self, db, table, no_backoff):
        booking.create_reservation(db, _payload(table), now=NOW)

        with pytest.raises(ConflictError) as exc_info:
            booking.create_reservation(db, _payload(table, reservation_time="20:00"), now=NOW)

        assert exc_info.value.code == "TABLE_UNAVAILABLE"
        assert exc_info.value.blocked == ["2025-08-26 19:00–21:00"]
        assert "19:00–21:00" in exc_info.value.message
        # 3 tentativi: due pause crescenti tra l'uno e l'altro
        assert no_backoff == [0.1, 0.2]
        assert db.query(Reservation).count() == 1

    @pytest.mark.parametrize("first,second", [
        (("2025-08-26", "22:00", 4), ("2025-08-27", "01:00", 1)),
        (("2025-08-27", "01:00", 1), ("2025-08-26", "22:00", 4)),
    ])
    def test_cross_midnight_overlap_in_either_order(self, db, table, first, second):
        day, start, duration = first
        booking.create_reservation(
            db, _payload(table, reservation_date=day, reservation_time=start, duration_hours=duration), now=NOW
        )
        day, start, duration = second
        with pytest.raises(ConflictError):
            booking.create_reservation(
                db, _payload(table, reservation_date=day, reservation_time=start, duration_hours=duration), now=NOW
            )

    def test_indefinite_conflicts_until_cap_only(self, db, table):
        booking.create_reservation(db, _payload(table, reservation_time="18:00", duration_hours=-1), now=NOW)
        with pytest.raises(ConflictError):
            booking.create_reservation(
                db, _payload(table, reservation_date="2025-08-27", reservation_time="01:45", duration_hours=1), now=NOW
            )
        after_cap = booking.create_reservation(
            db, _payload(table, reservation_date="2025-08-27", reservation_time="12:00"), now=NOW
        )
        assert after_cap.id is not None

    def test_other_database_errors_are_not_retried(self, db, table, monkeypatch, no_backoff):
        def broken_commit():
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", broken_commit)
        with pytest.raises(OperationalError):
            booking.create_reservation(db, _payload(table), now=NOW)
        assert no_backoff == []


class TestUpdate:
    def test_notes_only_edit_logs_one_updated_entry(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        booking.update_reservation(db, reservation.id, {"notes": "Tavolo vicino alla finestra"}, performed_by="Anna", now=NOW)

        logs = _logs(db, reservation.id)
        assert len(logs) == 1
        assert logs[0].action_type == "updated"
        assert logs[0].performed_by == "Anna"
        assert logs[0].field_changes == {"notes": {"old": "", "new": "Tavolo vicino alla finestra"}}
        assert logs[0].reservation_snapshot["notes"] == "Tavolo vicino alla finestra"

    def test_equivalent_values_write_no_entry(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        booking.update_reservation(
            db, reservation.id,
            {"reservation_time": "19:00:00", "duration_hours": "2.0", "reservation_date": "2025-08-26"},
            now=NOW,
        )
        assert _logs(db, reservation.id) == []

    def test_move_into_overlap_is_rejected_and_rolled_back(self, db, table):
        booking.create_reservation(db, _payload(table), now=NOW)
        other = booking.create_reservation(db, _payload(table, reservation_time="22:00"), now=NOW)

        with pytest.raises(ConflictError):
            booking.update_reservation(db, other.id, {"reservation_time": "20:00", "notes": "spostata"}, now=NOW)

        db.expire_all()
        reloaded = db.get(Reservation, other.id)
        assert reloaded.reservation_time == time(22, 0)
        assert reloaded.notes is None
        assert _logs(db, other.id) == []

    def test_extending_own_interval_does_not_conflict_with_itself(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        updated = booking.update_reservation(db, reservation.id, {"duration_hours": 3}, now=NOW)
        assert updated.duration_hours == 3

    def test_status_is_not_editable(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        with pytest.raises(ValidationError):
            booking.update_reservation(db, reservation.id, {"status": "completed"}, now=NOW)

    def test_capacity_checked_against_new_table(self, db, tables):
        reservation = booking.create_reservation(db, _payload(tables["A1"]), now=NOW)
        with pytest.raises(ValidationError) as exc_info:
            booking.update_reservation(db, reservation.id, {"table_id": tables["A2"].id}, now=NOW)
        assert "party_size" in exc_info.value.errors

    def test_cancelled_reservation_cannot_be_edited(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        booking.cancel_reservation(db, reservation.id)
        with pytest.raises(StateError):
            booking.update_reservation(db, reservation.id, {"notes": "x"}, now=NOW)

    def test_unknown_reservation(self, db):
        with pytest.raises(NotFoundError):
            booking.update_reservation(db, 999, {"notes": "x"}, now=NOW)


class TestComplete:
    def test_indefinite_gets_elapsed_duration_uncapped(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, reservation_time="18:00", duration_hours=-1), now=NOW)
        completed = booking.complete_reservation(db, reservation.id, now=datetime(2025, 8, 27, 3, 20))

        assert completed.status == "completed"
        # 18:00 -> 03:20 = 9h20m
        assert completed.duration_hours == 9.3
        assert _logs(db, reservation.id) == []

    def test_indefinite_minimum_is_a_tenth_of_an_hour(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, duration_hours=-1), now=NOW)
        completed = booking.complete_reservation(db, reservation.id, now=datetime(2025, 8, 26, 19, 1))
        assert completed.duration_hours == 0.1

    def test_indefinite_open_for_weeks_fits_the_column(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, duration_hours=-1), now=NOW)
        completed = booking.complete_reservation(db, reservation.id, now=datetime(2025, 10, 10, 19, 0))
        assert completed.duration_hours == 1080
        # DECIMAL(5, 2) si fermerebbe a 999.99
        assert Reservation.__table__.c.duration_hours.type.precision == 7

    def test_not_started_indefinite_cannot_be_completed(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, duration_hours=-1), now=NOW)
        with pytest.raises(StateError):
            booking.complete_reservation(db, reservation.id, now=datetime(2025, 8, 26, 18, 0))
        db.expire_all()
        assert db.get(Reservation, reservation.id).status == "active"

    def test_finite_keeps_duration(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, duration_hours=2.5), now=NOW)
        completed = booking.complete_reservation(db, reservation.id, now=datetime(2025, 8, 26, 20, 0))
        assert completed.duration_hours == 2.5
        assert completed.status == "completed"

    def test_other_changes_are_still_logged(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, duration_hours=-1), now=NOW)
        booking.complete_reservation(
            db, reservation.id, changes={"party_size": 4}, now=datetime(2025, 8, 26, 21, 0), performed_by="Anna"
        )
        logs = _logs(db, reservation.id)
        assert len(logs) == 1
        assert logs[0].field_changes == {"party_size": {"old": 3, "new": 4}}

    def test_operator_duration_on_indefinite_is_kept_and_logged(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, duration_hours=-1), now=NOW)
        completed = booking.complete_reservation(
            db, reservation.id, changes={"duration_hours": 3}, now=datetime(2025, 8, 26, 23, 30), performed_by="Anna"
        )
        assert completed.duration_hours == 3
        logs = _logs(db, reservation.id)
        assert len(logs) == 1
        assert logs[0].field_changes == {"duration_hours": {"old": -1, "new": 3}}

    def test_only_active_can_be_completed(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        booking.complete_reservation(db, reservation.id, now=datetime(2025, 8, 26, 22, 0))
        with pytest.raises(StateError):
            booking.complete_reservation(db, reservation.id, now=datetime(2025, 8, 26, 22, 0))

    def test_completed_reservation_frees_the_table(self, db, table):
        reservation = booking.create_reservation(db, _payload(table, duration_hours=-1), now=NOW)
        booking.complete_reservation(db, reservation.id, now=datetime(2025, 8, 26, 20, 0))
        later = booking.create_reservation(db, _payload(table, reservation_time="21:00"), now=NOW)
        assert later.status == "active"


class TestCancel:
    def test_cancel_keeps_the_row_and_logs_snapshot(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        booking.cancel_reservation(db, reservation.id, performed_by="Anna", ip_address="10.0.0.5")

        fetched = booking.get_reservation(db, reservation.id)
        assert fetched.status == "cancelled"

        logs = _logs(db, reservation.id)
        assert len(logs) == 1
        assert logs[0].action_type == "cancelled"
        assert logs[0].field_changes == {"status": {"old": "active", "new": "cancelled"}}
        assert logs[0].ip_address == "10.0.0.5"
        snapshot = logs[0].reservation_snapshot
        assert snapshot["guest_name"] == "Giulia Bianchi"
        assert snapshot["reservation_date"] == "2025-08-26"
        assert snapshot["reservation_time"] == "19:00"
        assert snapshot["status"] == "cancelled"

    def test_cancelled_slot_can_be_rebooked(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        booking.cancel_reservation(db, reservation.id)
        assert booking.create_reservation(db, _payload(table), now=NOW).id != reservation.id

    def test_cancel_twice_is_a_state_error(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        booking.cancel_reservation(db, reservation.id)
        with pytest.raises(StateError):
            booking.cancel_reservation(db, reservation.id)


class TestQueries:
    def test_get_reservations_filters(self, db, tables, room):
        a1 = booking.create_reservation(db, _payload(tables["A1"], guest_name="Paolo Verdi"), now=NOW)
        a2 = booking.create_reservation(db, _payload(tables["A2"], party_size=2, reservation_date="2025-08-27"), now=NOW)
        booking.cancel_reservation(db, a2.id)

        assert [r.id for r in booking.get_reservations(db)] == [a1.id]
        assert {r.id for r in booking.get_reservations(db, {"status": "all"})} == {a1.id, a2.id}
        assert [r.id for r in booking.get_reservations(db, {"guest_name": "verdi"})] == [a1.id]
        assert [r.id for r in booking.get_reservations(db, {"status": "all", "date_from": "2025-08-27"})] == [a2.id]
        assert [r.id for r in booking.get_reservations(db, {"room_id": room.id})] == [a1.id]

    def test_get_reservations_bad_date(self, db):
        with pytest.raises(ValidationError):
            booking.get_reservations(db, {"reservation_date": "ieri"})

    def test_search_matches_name_or_phone(self, db, table):
        reservation = booking.create_reservation(db, _payload(table), now=NOW)
        assert [r.id for r in booking.search_reservations(db, "bianchi")] == [reservation.id]
        assert [r.id for r in booking.search_reservations(db, "333")] == [reservation.id]
        assert booking.search_reservations(db, "") == []


class TestConcurrentBookings:
    """Due sessioni su un database su file, in thread diversi, sullo stesso tavolo."""

    @pytest.fixture
    def file_sessions(self, tmp_path):
        file_engine = make_engine(f"sqlite:///{tmp_path / 'pub.db'}")
        Base.metadata.create_all(bind=file_engine)
        yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        file_engine.dispose()

    def test_overlapping_bookings_from_two_threads_only_one_wins(self, file_sessions):
        with file_sessions() as session:
            room = Room(name="Sala grande")
            session.add(room)
            session.flush()
            table = Table(room_id=room.id, table_number="A1", max_capacity=4)
            session.add(table)
            session.commit()
            table_id = table.id

        barrier = threading.Barrier(2)
        outcomes = []

        def book(start):
            data = {
                "table_id": table_id,
                "guest_name": f"Cliente {start}",
                "party_size": 2,
                "reservation_date": "2025-08-26",
                "reservation_time": start,
                "duration_hours": 2,
            }
            with file_sessions() as session:
                barrier.wait()
                try:
                    booking.create_reservation(session, data, now=NOW)
                    outcomes.append("created")
                except ConflictError:
                    outcomes.append("conflict")

        threads = [threading.Thread(target=book, args=(start,)) for start in ("19:00", "20:00")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert sorted(outcomes) == ["conflict", "created"]
        with file_sessions() as session:
            assert session.query(Reservation).filter(Reservation.status == "active").count() == 1

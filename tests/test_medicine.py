"""
Tests for the medicine scheduler: due/overdue computation, mark-taken
classification, and reminder CRUD over a LocalStore.
"""

from datetime import date, datetime

import pytest

from medicine import (
    DoseAlreadyTaken,
    DoseLog,
    MedicineScheduler,
    Reminder,
    ReminderNotFound,
    compute_due_list,
    parse_clock,
)
from storage import LocalStore, MemoryKeyValueStore

TODAY = date(2024, 3, 10)


def at(hh: int, mm: int, day: date = TODAY) -> datetime:
    return datetime(day.year, day.month, day.day, hh, mm)


def make_reminder(times, **kw) -> Reminder:
    defaults = dict(id="r1", name="Aspirin", dosage="100mg", times=times, start_date=date(2024, 3, 1))
    defaults.update(kw)
    return Reminder(**defaults)


def make_log(status: str, scheduled_time: str = "08:00", when: datetime = None) -> DoseLog:
    return DoseLog(
        id="l1",
        reminder_id="r1",
        medicine_name="Aspirin",
        scheduled_time=scheduled_time,
        actual_time="08:10",
        status=status,
        timestamp=when or at(8, 10),
    )


@pytest.fixture
def scheduler() -> MedicineScheduler:
    return MedicineScheduler(LocalStore(MemoryKeyValueStore()))


def test_example_due_and_overdue_then_marked_late(scheduler: MedicineScheduler) -> None:
    reminder = scheduler.add_reminder("Aspirin", "100mg", ["08:00"], start_date=date(2024, 3, 1))

    due = scheduler.due_doses(at(8, 45))
    assert [(d.scheduled_time, d.is_overdue) for d in due] == [("08:00", True)]

    log = scheduler.mark_taken(reminder.id, "08:00", now=at(8, 45))
    assert log.status == "late"
    assert log.actual_time == "08:45"


def test_not_due_before_scheduled_time() -> None:
    assert compute_due_list(at(7, 59), [make_reminder(["08:00"])], []) == []


def test_due_exactly_at_scheduled_time_not_overdue() -> None:
    due = compute_due_list(at(8, 0), [make_reminder(["08:00"])], [])
    assert len(due) == 1
    assert due[0].is_overdue is False


@pytest.mark.parametrize("minute, overdue", [(30, False), (31, True)])
def test_overdue_threshold_is_strict(minute: int, overdue: bool) -> None:
    due = compute_due_list(at(8, minute), [make_reminder(["08:00"])], [])
    assert due[0].is_overdue is overdue


def test_taken_log_today_suppresses_dose() -> None:
    due = compute_due_list(at(9, 0), [make_reminder(["08:00"])], [make_log("taken")])
    assert due == []


def test_taken_log_from_yesterday_does_not_suppress() -> None:
    yesterday = make_log("taken", when=datetime(2024, 3, 9, 8, 10))
    due = compute_due_list(at(9, 0), [make_reminder(["08:00"])], [yesterday])
    assert len(due) == 1


def test_late_log_does_not_suppress_dose() -> None:
    due = compute_due_list(at(9, 0), [make_reminder(["08:00"])], [make_log("late", when=at(8, 45))])
    assert [d.scheduled_time for d in due] == ["08:00"]


def test_log_for_other_time_does_not_suppress() -> None:
    due = compute_due_list(at(21, 0), [make_reminder(["08:00", "20:00"])], [make_log("taken")])
    assert [d.scheduled_time for d in due] == ["20:00"]


def test_inactive_and_out_of_window_reminders_skipped() -> None:
    reminders = [
        make_reminder(["08:00"], id="inactive", is_active=False),
        make_reminder(["08:00"], id="future", start_date=date(2024, 3, 11)),
        make_reminder(["08:00"], id="ended", end_date=date(2024, 3, 9)),
        make_reminder(["08:00"], id="last-day", end_date=TODAY),
    ]
    due = compute_due_list(at(9, 0), reminders, [])
    assert [d.reminder.id for d in due] == ["last-day"]


def test_due_list_keeps_input_order() -> None:
    reminders = [
        make_reminder(["12:00", "08:00"], id="a"),
        make_reminder(["09:00"], id="b"),
    ]
    due = compute_due_list(at(13, 0), reminders, [])
    assert [(d.reminder.id, d.scheduled_time) for d in due] == [("a", "12:00"), ("a", "08:00"), ("b", "09:00")]


@pytest.mark.parametrize("minute, status", [(30, "taken"), (31, "late"), (0, "taken")])
def test_mark_taken_lateness(scheduler: MedicineScheduler, minute: int, status: str) -> None:
    reminder = scheduler.add_reminder("Aspirin", "100mg", ["08:00"])
    log = scheduler.mark_taken(reminder.id, "08:00", notes="with food", now=at(8, minute))
    assert log.status == status
    assert log.notes == "with food"
    assert log.medicine_name == "Aspirin"


def test_mark_taken_unknown_reminder(scheduler: MedicineScheduler) -> None:
    with pytest.raises(ReminderNotFound):
        scheduler.mark_taken("missing", "08:00", now=at(8, 0))


def test_mark_taken_appends_without_touching_existing_logs(scheduler: MedicineScheduler) -> None:
    reminder = scheduler.add_reminder("Aspirin", "100mg", ["08:00"])
    first = scheduler.mark_taken(reminder.id, "08:00", now=at(8, 50))
    second = scheduler.mark_taken(reminder.id, "08:00", now=at(8, 55))

    assert scheduler.logs == [first, second]
    assert first.status == second.status == "late"


def test_second_on_time_confirmation_rejected(scheduler: MedicineScheduler) -> None:
    reminder = scheduler.add_reminder("Aspirin", "100mg", ["08:00"])
    scheduler.mark_taken(reminder.id, "08:00", now=at(8, 5))

    with pytest.raises(DoseAlreadyTaken):
        scheduler.mark_taken(reminder.id, "08:00", now=at(8, 10))
    assert len(scheduler.logs) == 1


def test_logs_and_reminders_persist_through_store() -> None:
    store = LocalStore(MemoryKeyValueStore())
    scheduler = MedicineScheduler(store)
    reminder = scheduler.add_reminder("Metformin", "500mg", ["08:00", " ", "20:00"], end_date=date(2030, 1, 1))
    scheduler.mark_taken(reminder.id, "08:00", now=at(8, 0, date.today()))

    reloaded = MedicineScheduler(store)
    assert reloaded.reminders == [reminder]
    assert reloaded.reminders[0].times == ["08:00", "20:00"]
    assert reloaded.taken_count_today(reminder.id, at(9, 0, date.today())) == 1


def test_add_reminder_requires_fields(scheduler: MedicineScheduler) -> None:
    with pytest.raises(ValueError):
        scheduler.add_reminder("", "100mg", ["08:00"])
    with pytest.raises(ValueError):
        scheduler.add_reminder("Aspirin", "100mg", ["", "  "])
    with pytest.raises(ValueError):
        scheduler.add_reminder("Aspirin", "100mg", ["25:00"])


def test_update_toggle_delete(scheduler: MedicineScheduler) -> None:
    reminder = scheduler.add_reminder("Aspirin", "100mg", ["08:00"])

    updated = scheduler.update_reminder(reminder.id, dosage="200mg", times=["9:5"])
    assert updated.dosage == "200mg"
    assert updated.times == ["09:05"]

    assert scheduler.toggle_reminder(reminder.id).is_active is False
    assert scheduler.toggle_reminder(reminder.id).is_active is True

    scheduler.delete_reminder(reminder.id)
    assert scheduler.reminders == []
    with pytest.raises(ReminderNotFound):
        scheduler.delete_reminder(reminder.id)


def test_reminders_due_at_matches_exact_minute(scheduler: MedicineScheduler) -> None:
    scheduler.add_reminder("Aspirin", "100mg", ["08:00", "08:30"], start_date=date(2024, 3, 1))

    assert [d.scheduled_time for d in scheduler.reminders_due_at(at(8, 30))] == ["08:30"]
    assert scheduler.reminders_due_at(at(8, 31)) == []


def test_logs_for_day_newest_first(scheduler: MedicineScheduler) -> None:
    reminder = scheduler.add_reminder("Aspirin", "100mg", ["08:00", "12:00"], start_date=date(2024, 3, 1))
    morning = scheduler.mark_taken(reminder.id, "08:00", now=at(8, 0))
    noon = scheduler.mark_taken(reminder.id, "12:00", now=at(12, 0))
    scheduler.mark_taken(reminder.id, "08:00", now=at(8, 0, date(2024, 3, 11)))

    assert scheduler.logs_for_day(at(23, 0)) == [noon, morning]


def test_malformed_entries_are_skipped() -> None:
    kv = MemoryKeyValueStore()
    kv.set("careconnect-medicine-reminders", [{"id": "x"}])
    scheduler = MedicineScheduler(LocalStore(kv))
    assert scheduler.reminders == []


@pytest.mark.parametrize("value", ["8", "aa:bb", "24:00", "12:60", None])
def test_parse_clock_rejects_garbage(value) -> None:
    with pytest.raises(ValueError):
        parse_clock(value)


def test_reminder_with_unparseable_time_is_skipped_on_load() -> None:
    kv = MemoryKeyValueStore()
    good = {"id": "ok", "name": "Aspirin", "dosage": "100mg", "times": ["8:00"], "start_date": "2024-03-01"}
    bad = {**good, "id": "bad", "times": ["8am"]}
    kv.set("careconnect-medicine-reminders", [bad, good])

    scheduler = MedicineScheduler(LocalStore(kv))

    assert [r.id for r in scheduler.reminders] == ["ok"]
    assert scheduler.reminders[0].times == ["08:00"]
    assert [d.scheduled_time for d in scheduler.due_doses(at(9, 0))] == ["08:00"]


@pytest.mark.parametrize("payload", [5, "junk", {"id": "x"}])
def test_non_list_medicine_entries_load_as_empty(payload) -> None:
    kv = MemoryKeyValueStore()
    kv.set("careconnect-medicine-reminders", payload)
    kv.set("careconnect-medicine-logs", payload)

    scheduler = MedicineScheduler(LocalStore(kv))

    assert scheduler.reminders == []
    assert scheduler.logs == []
    assert scheduler.due_doses(at(9, 0)) == []

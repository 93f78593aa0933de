from dataclasses import dataclass, asdict, replace
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple
import logging
import uuid

from storage import LocalStore

logger = logging.getLogger(__name__)

GRACE_MINUTES = 30

STATUS_TAKEN = "taken"
STATUS_MISSED = "missed"
STATUS_LATE = "late"


class MedicineError(Exception):
    pass


class ReminderNotFound(MedicineError, LookupError):
    pass


class DoseAlreadyTaken(MedicineError, ValueError):
    pass


def parse_clock(t: str) -> Tuple[int, int]:
    """'08:05' -> (8, 5). Raises ValueError on anything that isn't HH:MM."""
    try:
        hh, mm = t.strip().split(":")
        hour, minute = int(hh), int(mm)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid clock time: {t!r}") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid clock time: {t!r}")
    return hour, minute


def clock_minutes(t: str) -> int:
    hour, minute = parse_clock(t)
    return hour * 60 + minute


def format_clock(dt: datetime) -> str:
    return f"{dt.hour:02d}:{dt.minute:02d}"


@dataclass
class Reminder:
    id: str
    name: str
    dosage: str
    times: List[str]
    start_date: date
    end_date: Optional[date] = None
    notes: Optional[str] = None
    is_active: bool = True

    def in_window(self, day: date) -> bool:
        if day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["start_date"] = self.start_date.isoformat()
        d["end_date"] = self.end_date.isoformat() if self.end_date else None
        return d

    @classmethod
    def from_dict(cls, d: Dict) -> "Reminder":
        return cls(
            id=d["id"],
            name=d["name"],
            dosage=d["dosage"],
            times=_clean_times(d["times"]),
            start_date=date.fromisoformat(d["start_date"]),
            end_date=date.fromisoformat(d["end_date"]) if d.get("end_date") else None,
            notes=d.get("notes"),
            is_active=d.get("is_active", True),
        )


@dataclass(frozen=True)
class DoseLog:
    id: str
    reminder_id: str
    medicine_name: str
    scheduled_time: str
    actual_time: str
    status: str
    timestamp: datetime
    notes: Optional[str] = None

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d

    @classmethod
    def from_dict(cls, d: Dict) -> "DoseLog":
        return cls(
            id=d["id"],
            reminder_id=d["reminder_id"],
            medicine_name=d["medicine_name"],
            scheduled_time=d["scheduled_time"],
            actual_time=d["actual_time"],
            status=d["status"],
            timestamp=datetime.fromisoformat(d["timestamp"]),
            notes=d.get("notes"),
        )


@dataclass(frozen=True)
class DueDose:
    reminder: Reminder
    scheduled_time: str
    is_overdue: bool


def _taken_today(logs: List[DoseLog], reminder_id: str, scheduled_time: str, today: date) -> bool:
    return any(
        log.reminder_id == reminder_id
        and log.scheduled_time == scheduled_time
        and log.timestamp.date() == today
        and log.status == STATUS_TAKEN
        for log in logs
    )


def compute_due_list(now: datetime, reminders: List[Reminder], logs: List[DoseLog]) -> List[DueDose]:
    today = now.date()
    minutes_now = now.hour * 60 + now.minute
    due: List[DueDose] = []

    for reminder in reminders:
        if not reminder.is_active or not reminder.in_window(today):
            continue
        for t in reminder.times:
            minutes_scheduled = clock_minutes(t)
            if minutes_now < minutes_scheduled:
                continue
            if _taken_today(logs, reminder.id, t, today):
                continue
            due.append(DueDose(
                reminder=reminder,
                scheduled_time=t,
                is_overdue=minutes_now > minutes_scheduled + GRACE_MINUTES,
            ))
    return due


def classify_dose(scheduled_time: str, actual: datetime) -> str:
    minutes_late = (actual.hour * 60 + actual.minute) - clock_minutes(scheduled_time)
    return STATUS_LATE if minutes_late > GRACE_MINUTES else STATUS_TAKEN


class MedicineScheduler:
    """
    Reminder CRUD, due-dose computation and adherence logging over a LocalStore.

    Dose logs are append-only: mark_taken adds an entry and never edits one.
    """

    def __init__(self, store: LocalStore):
        self.store = store
        self.reminders: List[Reminder] = []
        self.logs: List[DoseLog] = []
        self.reload()

    def reload(self):
        self.reminders = []
        for raw in self.store.get_reminders():
            try:
                self.reminders.append(Reminder.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.error("Skipping malformed reminder entry: %r", raw)
        self.logs = []
        for raw in self.store.get_dose_logs():
            try:
                self.logs.append(DoseLog.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.error("Skipping malformed dose log entry: %r", raw)

    def _save_reminders(self):
        self.store.save_reminders([r.to_dict() for r in self.reminders])

    def _save_logs(self):
        self.store.save_dose_logs([log.to_dict() for log in self.logs])

    def get_reminder(self, reminder_id: str) -> Reminder:
        for r in self.reminders:
            if r.id == reminder_id:
                return r
        raise ReminderNotFound(reminder_id)

    def add_reminder(self, name: str, dosage: str, times: List[str],
                     start_date: Optional[date] = None, end_date: Optional[date] = None,
                     notes: Optional[str] = None, is_active: bool = True) -> Reminder:
        times = _clean_times(times)
        if not name or not dosage or not times:
            raise ValueError("Medicine name, dosage and at least one time are required")

        reminder = Reminder(
            id=str(uuid.uuid4()),
            name=name,
            dosage=dosage,
            times=times,
            start_date=start_date or date.today(),
            end_date=end_date,
            notes=notes or None,
            is_active=is_active,
        )
        self.reminders.append(reminder)
        self._save_reminders()
        logger.info("Added reminder %s (%s) at %s", reminder.name, reminder.dosage, ", ".join(times))
        return reminder

    def update_reminder(self, reminder_id: str, **updates) -> Reminder:
        current = self.get_reminder(reminder_id)
        updates.pop("id", None)
        if "times" in updates:
            updates["times"] = _clean_times(updates["times"])
            if not updates["times"]:
                raise ValueError("At least one time is required")
        updated = replace(current, **updates)
        self.reminders = [updated if r.id == reminder_id else r for r in self.reminders]
        self._save_reminders()
        return updated

    def toggle_reminder(self, reminder_id: str) -> Reminder:
        reminder = self.get_reminder(reminder_id)
        return self.update_reminder(reminder_id, is_active=not reminder.is_active)

    def delete_reminder(self, reminder_id: str) -> None:
        self.get_reminder(reminder_id)
        self.reminders = [r for r in self.reminders if r.id != reminder_id]
        self._save_reminders()

    def due_doses(self, now: Optional[datetime] = None) -> List[DueDose]:
        return compute_due_list(now or datetime.now(), self.reminders, self.logs)

    def reminders_due_at(self, now: Optional[datetime] = None) -> List[DueDose]:
        """Doses scheduled for this exact minute and not yet taken."""
        now = now or datetime.now()
        current = format_clock(now)
        return [d for d in self.due_doses(now) if d.scheduled_time == current]

    def mark_taken(self, reminder_id: str, scheduled_time: str,
                   notes: Optional[str] = None, now: Optional[datetime] = None) -> DoseLog:
        reminder = self.get_reminder(reminder_id)
        now = now or datetime.now()
        status = classify_dose(scheduled_time, now)
        if status == STATUS_TAKEN and _taken_today(self.logs, reminder_id, scheduled_time, now.date()):
            raise DoseAlreadyTaken(f"{reminder.name} at {scheduled_time} already taken today")

        log = DoseLog(
            id=str(uuid.uuid4()),
            reminder_id=reminder.id,
            medicine_name=reminder.name,
            scheduled_time=scheduled_time,
            actual_time=format_clock(now),
            status=status,
            timestamp=now,
            notes=notes,
        )
        self.logs.append(log)
        self._save_logs()
        logger.info("%s marked %s (scheduled %s, actual %s)",
                    reminder.name, status, scheduled_time, log.actual_time)
        return log

    def taken_count_today(self, reminder_id: str, now: Optional[datetime] = None) -> int:
        today = (now or datetime.now()).date()
        return sum(
            1 for log in self.logs
            if log.reminder_id == reminder_id
            and log.timestamp.date() == today
            and log.status == STATUS_TAKEN
        )

    def logs_for_day(self, now: Optional[datetime] = None) -> List[DoseLog]:
        today = (now or datetime.now()).date()
        todays = [log for log in self.logs if log.timestamp.date() == today]
        return sorted(todays, key=lambda log: log.timestamp, reverse=True)


def _clean_times(times: List[str]) -> List[str]:
    cleaned = []
    for t in times:
        if t is None or (isinstance(t, str) and not t.strip()):
            continue
        hour, minute = parse_clock(t)
        cleaned.append(f"{hour:02d}:{minute:02d}")
    return cleaned

"""Read-only queries over a doctor's published schedule entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Iterator, List, Mapping, Tuple, Union

from .models import ScheduleEntry

DATE_FORMAT = "%Y-%m-%d"

DateLike = Union[date, str]


def as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, DATE_FORMAT).date()


def unique_dates(entries: Iterable[ScheduleEntry]) -> List[date]:
    """Return each schedule date once, in the order it first appears."""

    seen = set()
    dates: List[date] = []
    for entry in entries:
        if entry.date not in seen:
            seen.add(entry.date)
            dates.append(entry.date)
    return dates


def entries_for_date(entries: Iterable[ScheduleEntry], target: DateLike) -> List[ScheduleEntry]:
    """Return the entries on ``target``, keeping their source order."""

    target_date = as_date(target)
    return [entry for entry in entries if entry.date == target_date]


def format_schedule_date(value: DateLike) -> str:
    """Render a schedule date for display, e.g. ``Saturday, 01/06/2024``."""

    return as_date(value).strftime("%A, %d/%m/%Y")


@dataclass(frozen=True)
class ScheduleCatalog:
    """Snapshot of one doctor's schedule entries as fetched from the backend."""

    doctor_id: str
    entries: Tuple[ScheduleEntry, ...] = ()

    @classmethod
    def from_payloads(cls, doctor_id: str, payloads: Iterable[Mapping[str, Any]]) -> "ScheduleCatalog":
        entries = tuple(ScheduleEntry.from_payload(payload, doctor_id=doctor_id) for payload in payloads)
        return cls(doctor_id=str(doctor_id), entries=entries)

    def dates(self) -> List[date]:
        return unique_dates(self.entries)

    def for_date(self, target: DateLike) -> List[ScheduleEntry]:
        return entries_for_date(self.entries, target)

    def get(self, entry_id: str) -> ScheduleEntry:
        for entry in self.entries:
            if entry.id == str(entry_id):
                return entry
        raise KeyError(f"Schedule {entry_id} is not published for doctor {self.doctor_id}")

    def __iter__(self) -> Iterator[ScheduleEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


__all__ = [
    "as_date",
    "ScheduleCatalog",
    "entries_for_date",
    "format_schedule_date",
    "unique_dates",
]

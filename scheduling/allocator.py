"""Bookability rules for schedule entries and cancellation eligibility.

Everything here is advisory: the backend owns the capacity counter and has
the final say. Nothing in this module mutates an entry.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import CapacityExceeded, DataIntegrityError, EmptyReason, NotCancelable, ScheduleClosed
from .models import CANCELABLE_STATUSES, Appointment, ScheduleEntry, ScheduleStatus

logger = logging.getLogger(__name__)


def remaining_capacity(entry: ScheduleEntry) -> int:
    """Return the number of unbooked slots on ``entry``.

    A negative figure means the client and backend disagree about the entry,
    so it is reported as a :class:`DataIntegrityError` rather than clamped.
    """

    if entry.max_patients < 0:
        raise DataIntegrityError(f"Schedule {entry.id} has negative capacity {entry.max_patients}")
    if entry.booked_patients < 0:
        raise DataIntegrityError(f"Schedule {entry.id} has negative booked count {entry.booked_patients}")
    remaining = entry.max_patients - entry.booked_patients
    if remaining < 0:
        raise DataIntegrityError(
            f"Schedule {entry.id} is overbooked ({entry.booked_patients}/{entry.max_patients})"
        )
    return remaining


def is_bookable(entry: ScheduleEntry) -> bool:
    try:
        remaining = remaining_capacity(entry)
    except DataIntegrityError as exc:
        logger.error("Treating schedule %s as unbookable: %s", entry.id, exc)
        return False
    return entry.status is ScheduleStatus.ACTIVE and remaining > 0


def validate_booking_attempt(entry: ScheduleEntry) -> None:
    """Raise if ``entry`` must not be submitted for booking."""

    if remaining_capacity(entry) <= 0:
        raise CapacityExceeded(entry.id)
    if entry.status is not ScheduleStatus.ACTIVE:
        raise ScheduleClosed(entry.id)


def validate_cancellation_attempt(appointment: Appointment) -> None:
    if appointment.status not in CANCELABLE_STATUSES:
        raise NotCancelable(appointment.id, appointment.status)


def validate_cancellation_reason(reason: Optional[str]) -> str:
    """Return ``reason`` stripped; blank or missing reasons raise :class:`EmptyReason`."""

    cleaned = (reason or "").strip()
    if not cleaned:
        raise EmptyReason()
    return cleaned


__all__ = [
    "is_bookable",
    "remaining_capacity",
    "validate_booking_attempt",
    "validate_cancellation_attempt",
    "validate_cancellation_reason",
]

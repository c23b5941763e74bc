"""
Availability index.

Keeps, per practitioner, the ordered intervals of appointments that are
currently scheduled. It is a projection of the appointment store and can be
rebuilt from it at any time. Callers serialize mutations for one
practitioner (see ``SchedulingService``); the index only protects its own
practitioner registry.

Intervals are half-open: ``[start, end)``. A slot that starts exactly where
another ends does not overlap it.
"""
from bisect import bisect_left, insort
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional
import threading


class Interval(NamedTuple):
    start: datetime
    end: datetime
    appointment_id: str


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


class AvailabilityIndex:
    def __init__(self):
        self._entries: Dict[str, List[Interval]] = {}
        self._registry_lock = threading.Lock()

    def is_loaded(self, practitioner_id: str) -> bool:
        return practitioner_id in self._entries

    def loaded_practitioners(self) -> List[str]:
        with self._registry_lock:
            return list(self._entries)

    def load(self, practitioner_id: str, intervals: Iterable[Interval]) -> None:
        """Replace the practitioner's intervals with ``intervals``."""
        ordered = sorted(intervals)
        with self._registry_lock:
            self._entries[practitioner_id] = ordered

    def _intervals(self, practitioner_id: str) -> List[Interval]:
        with self._registry_lock:
            return self._entries.setdefault(practitioner_id, [])

    def conflicts(self, practitioner_id: str, start: datetime, end: datetime) -> List[Interval]:
        """Return the scheduled intervals overlapping ``[start, end)``."""
        with self._registry_lock:
            intervals = self._entries.get(practitioner_id, [])
        # First interval whose start is >= our start; its predecessor may still reach into us
        idx = bisect_left(intervals, (start,))
        if idx > 0:
            idx -= 1

        found = []
        for interval in intervals[idx:]:
            if interval.start >= end:
                break
            if intervals_overlap(interval.start, interval.end, start, end):
                found.append(interval)
        return found

    def overlaps(self, practitioner_id: str, start: datetime, end: datetime) -> bool:
        return bool(self.conflicts(practitioner_id, start, end))

    def add(self, practitioner_id: str, start: datetime, end: datetime, appointment_id: str) -> None:
        insort(self._intervals(practitioner_id), Interval(start, end, appointment_id))

    def remove(self, practitioner_id: str, appointment_id: str) -> bool:
        """Drop an appointment's interval; returns False if it was not indexed."""
        with self._registry_lock:
            intervals = self._entries.get(practitioner_id, [])
        for position, interval in enumerate(intervals):
            if interval.appointment_id == appointment_id:
                del intervals[position]
                return True
        return False

    def scheduled(self, practitioner_id: str) -> List[Interval]:
        with self._registry_lock:
            return list(self._entries.get(practitioner_id, []))

    def free_windows(
        self,
        practitioner_id: str,
        window_start: datetime,
        window_end: datetime,
        step: timedelta,
        not_before: Optional[datetime] = None,
    ) -> List[datetime]:
        """
        Candidate start times of length ``step`` inside the window.

        Starts are laid out every ``step`` from ``window_start``; a candidate
        is returned when it fits in the window, starts after ``not_before``
        (if given) and does not overlap a scheduled interval.
        """
        starts = []
        current = window_start
        while current + step <= window_end:
            if (not_before is None or current > not_before) and not self.overlaps(
                practitioner_id, current, current + step
            ):
                starts.append(current)
            current += step
        return starts

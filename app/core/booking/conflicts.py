"""
Conflict detection.

Two half-open windows [a_start, a_end) and [b_start, b_end) overlap iff
a_start < b_end and b_start < a_end. Existing bookings are inflated by
the turnover buffer on both sides before comparing. Cancelled bookings
never conflict.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from app.core.booking.types import Booking


def windows_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Half-open interval overlap."""
    return a_start < b_end and b_start < a_end


def buffered_window(booking: Booking, buffer_minutes: int) -> tuple[datetime, datetime]:
    """Booking window widened by the buffer on both ends."""
    buffer = timedelta(minutes=buffer_minutes)
    return booking.start_time - buffer, booking.end_time + buffer


class ConflictDetector:
    """Checks candidate windows against existing bookings."""

    def conflicting_bookings(
        self,
        candidate_start: datetime,
        candidate_end: datetime,
        existing_bookings: Iterable[Booking],
        buffer_minutes: int = 0,
        resource_id: Optional[str] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> list[Booking]:
        """Return every blocking booking that overlaps the candidate.

        Args:
            candidate_start: Candidate window start
            candidate_end: Candidate window end
            existing_bookings: Bookings to compare against
            buffer_minutes: Turnover buffer applied around existing bookings
            resource_id: Only compare bookings on this resource when given
            exclude_booking_id: Booking to ignore (the one being rescheduled)

        Raises:
            ValueError: If the candidate window is empty or inverted
        """
        if candidate_end <= candidate_start:
            raise ValueError(
                f"Invalid window: start {candidate_start.isoformat()} "
                f"is not before end {candidate_end.isoformat()}"
            )
        if buffer_minutes < 0:
            raise ValueError("buffer_minutes must be >= 0")

        conflicts = []
        for booking in existing_bookings:
            if not booking.blocks_time:
                continue
            if exclude_booking_id and booking.id == exclude_booking_id:
                continue
            if resource_id is not None and booking.resource_id != resource_id:
                continue

            start, end = buffered_window(booking, buffer_minutes)
            if windows_overlap(candidate_start, candidate_end, start, end):
                conflicts.append(booking)

        return conflicts

    def has_conflict(
        self,
        candidate_start: datetime,
        candidate_end: datetime,
        existing_bookings: Iterable[Booking],
        buffer_minutes: int = 0,
        resource_id: Optional[str] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        """Check whether the candidate overlaps any blocking booking."""
        return bool(
            self.conflicting_bookings(
                candidate_start,
                candidate_end,
                existing_bookings,
                buffer_minutes=buffer_minutes,
                resource_id=resource_id,
                exclude_booking_id=exclude_booking_id,
            )
        )


_detector = ConflictDetector()


def has_conflict(
    candidate_start: datetime,
    candidate_end: datetime,
    existing_bookings: Iterable[Booking],
    buffer_minutes: int = 0,
) -> bool:
    """Module-level shortcut over a shared detector."""
    return _detector.has_conflict(
        candidate_start, candidate_end, existing_bookings, buffer_minutes
    )

"""
Availability engine: which spots are free for a date/time window, and booking
creation and cancellation against that answer.

Windows are half-open [start, end) in minutes since midnight of the booking
date. Two windows overlap iff ``a_start < b_end and a_end > b_start``, so a
booking ending at 12:00 does not block one starting at 12:00.

A window may end at midnight ("24:00") but never past it.
"""

import logging
import re
from datetime import date as Date, datetime
from typing import Callable, List, Optional, Tuple

from database import MemoryStore
from errors import Conflict, Forbidden, InvalidState, NotFound, ValidationFailed
from schemas import Booking as BookingSchema
from security import safe_user

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("PENDING", "CONFIRMED")
TERMINAL_STATUSES = ("COMPLETED", "CANCELLED")
STATUS_LABELS = {
    "CONFIRMED": "Active",
    "PENDING": "Upcoming",
    "COMPLETED": "Completed",
    "CANCELLED": "Cancelled",
}

MINUTES_PER_DAY = 24 * 60
RECENT_BOOKINGS_LIMIT = 5

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


# ----------------------------------------------------------------------------
# Time helpers
# ----------------------------------------------------------------------------
def parse_date(value) -> str:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationFailed(f"Invalid date {value!r}, expected YYYY-MM-DD")
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationFailed(f"Invalid date {value!r}, expected YYYY-MM-DD") from None
    return value


def parse_time(value) -> int:
    """Minutes since midnight for a 24-hour ``HH:MM`` string."""
    match = _TIME_RE.match(value) if isinstance(value, str) else None
    if not match:
        raise ValidationFailed(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_window(start_time, duration_hours) -> Tuple[int, int]:
    if isinstance(duration_hours, bool) or not isinstance(duration_hours, int) or duration_hours < 1:
        raise ValidationFailed("Duration must be a positive whole number of hours")
    start = parse_time(start_time)
    end = start + duration_hours * 60
    if end > MINUTES_PER_DAY:
        raise ValidationFailed("Bookings cannot extend past midnight")
    return start, end


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    return a_start < b_end and a_end > b_start


# ----------------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------------
class AvailabilityEngine:
    """Booking rules on top of a store.

    ``create_booking`` runs its availability check and insert inside the
    store's per-spot lock, so two concurrent requests for the same
    window cannot both succeed.
    """

    def __init__(self, store: MemoryStore, today: Optional[Callable[[], Date]] = None):
        self.store = store
        self.today = today or Date.today

    def _blocks(self, booking: dict, start: int, end: int) -> bool:
        if booking["status"] == "CANCELLED":
            return False
        return overlaps(start, end, parse_time(booking["start_time"]), self._end_minutes(booking))

    @staticmethod
    def _end_minutes(booking: dict) -> int:
        # "24:00" is a valid end of window but not a valid HH:MM start
        if booking["end_time"] == "24:00":
            return MINUTES_PER_DAY
        return parse_time(booking["end_time"])

    def _spot_is_free(self, spot: dict, date: str, start: int, end: int) -> bool:
        if not spot["is_available"]:
            return False
        bookings = self.store.find("booking", {"spot_id": spot["id"], "date": date})
        return not any(self._blocks(b, start, end) for b in bookings)

    def get_available_spots(self, date: str, start_time: str, duration_hours: int) -> List[dict]:
        date = parse_date(date)
        start, end = parse_window(start_time, duration_hours)
        return [spot for spot in self.store.find("spot") if self._spot_is_free(spot, date, start, end)]

    def enrich(self, booking: dict) -> dict:
        return {
            **booking,
            "user": safe_user(self.store.get("user", booking["user_id"])),
            "spot": self.store.get("spot", booking["spot_id"]),
        }

    def create_booking(self, user_id: int, spot_id: int, date: str, start_time: str, duration_hours: int) -> dict:
        date = parse_date(date)
        start, end = parse_window(start_time, duration_hours)

        if self.store.get("spot", spot_id) is None:
            raise NotFound("Parking spot not found")
        if self.store.get("user", user_id) is None:
            raise NotFound("User not found")

        with self.store.spot_lock(spot_id):
            spot = self.store.get("spot", spot_id)
            if spot is None:
                raise NotFound("Parking spot not found")
            if not self._spot_is_free(spot, date, start, end):
                logger.warning(
                    "Rejected booking for spot %s on %s %s-%s: slot taken",
                    spot["spot_number"], date, format_time(start), format_time(end),
                )
                raise Conflict("This spot is not available for the selected time slot")

            booking = BookingSchema(
                user_id=user_id,
                spot_id=spot_id,
                date=date,
                start_time=format_time(start),
                end_time=format_time(end),
                duration=duration_hours,
                total_price=spot["price_per_hour"] * duration_hours,
                status="CONFIRMED",
            )
            created = self.store.create("booking", booking)

        logger.info(
            "Booking %s created: user %s, spot %s, %s %s-%s",
            created["id"], user_id, spot["spot_number"], date, created["start_time"], created["end_time"],
        )
        return self.enrich(created)

    def cancel_booking(self, booking_id: int, requesting_user: dict) -> dict:
        booking = self.store.get("booking", booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        if booking["user_id"] != requesting_user["id"] and not requesting_user.get("is_admin"):
            raise Forbidden("Not authorized to cancel this booking")

        with self.store.spot_lock(booking["spot_id"]):
            booking = self.store.get("booking", booking_id)
            if booking["status"] in TERMINAL_STATUSES:
                raise InvalidState(f"Booking cannot be cancelled. Current status: {booking['status']}")
            updated = self.store.update("booking", booking_id, {"status": "CANCELLED"})

        logger.info("Booking %s cancelled by user %s", booking_id, requesting_user["id"])
        return self.enrich(updated)

    def get_dashboard_stats(self) -> dict:
        users = self.store.find("user")
        spots = self.store.find("spot")
        bookings = self.store.find("booking")
        today = self.today().isoformat()

        live = [b for b in bookings if b["status"] != "CANCELLED"]

        # counts every date on record, not just today
        occupancy_by_hour = []
        for hour in range(24):
            count = sum(1 for b in live if parse_time(b["start_time"]) // 60 == hour)
            occupancy_by_hour.append({"hour": f"{hour:02d}:00", "count": count})

        recent = []
        for b in sorted(bookings, key=lambda b: (b["created_at"], b["id"]), reverse=True):
            user = self.store.get("user", b["user_id"])
            spot = self.store.get("spot", b["spot_id"])
            if user is None or spot is None:
                continue
            recent.append({
                "id": b["id"],
                "user_name": user["name"],
                "spot_number": spot["spot_number"],
                "time": f"{b['date']}, {b['start_time']}",
                "status": STATUS_LABELS[b["status"]],
            })
            if len(recent) == RECENT_BOOKINGS_LIMIT:
                break

        return {
            "total_users": len(users),
            "active_bookings": sum(1 for b in bookings if b["status"] in ACTIVE_STATUSES),
            "occupied_spots": sum(1 for s in spots if not s["is_available"]),
            "revenue_today": round(sum(b["total_price"] for b in live if b["date"] == today), 2),
            "occupancy_by_hour": occupancy_by_hour,
            "recent_bookings": recent,
        }

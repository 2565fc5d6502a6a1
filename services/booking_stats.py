"""Derived figures for the dashboard: totals, monthly chart, top trips, activity."""

from __future__ import annotations

import calendar
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .booking_normaliser import Booking, DATE_PLACEHOLDER, parse_booking_datetime

MONTH_LABELS = [calendar.month_abbr[index] for index in range(1, 13)]
TRAILING_MONTHS = 6
LEADERBOARD_SIZE = 3
ACTIVITY_SIZE = 5

STATUS_VERBS = {
    'pending': 'requested',
    'confirmed': 'booked',
    'cancelled': 'cancelled',
}


@dataclass(frozen=True)
class DashboardStats:
    revenue: float
    total: int
    pending: int
    confirmed: int
    cancelled: int

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MonthBucket:
    month: str
    revenue: float
    bookings: int

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    trip_title: str
    bookings: int
    revenue: float

    def as_dict(self) -> dict:
        return {
            'rank': self.rank,
            'tripTitle': self.trip_title,
            'bookings': self.bookings,
            'revenue': self.revenue,
        }


@dataclass(frozen=True)
class ActivityItem:
    booking_id: str
    user: str
    action: str
    target: str
    time: str
    amount: str

    def as_dict(self) -> dict:
        return {
            'id': self.booking_id,
            'user': self.user,
            'action': self.action,
            'target': self.target,
            'time': self.time,
            'amount': self.amount,
        }


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def compute_stats(bookings: Sequence[Booking]) -> DashboardStats:
    revenue = 0.0
    counts = {status: 0 for status in STATUS_VERBS}
    for booking in bookings:
        counts[booking.status] = counts.get(booking.status, 0) + 1
        if booking.status == 'confirmed':
            revenue += booking.amount
    return DashboardStats(
        revenue=round(revenue, 2),
        total=len(bookings),
        pending=counts['pending'],
        confirmed=counts['confirmed'],
        cancelled=counts['cancelled'],
    )


def monthly_series(bookings: Sequence[Booking], today: Optional[datetime] = None) -> List[MonthBucket]:
    """Revenue and booking counts per month of the current year.

    Only the trailing window ending at the current month is returned (the
    current month plus up to six before it, never crossing into last year).
    Bookings dated outside the current year, or undated, are left out.
    """
    today = today or utcnow()
    revenue = [0.0] * 12
    counts = [0] * 12

    for booking in bookings:
        when = booking.date
        if when is None or when.year != today.year:
            continue
        index = when.month - 1
        counts[index] += 1
        if booking.status == 'confirmed':
            revenue[index] += booking.amount

    current = today.month - 1
    start = max(0, current - TRAILING_MONTHS)
    return [
        MonthBucket(month=MONTH_LABELS[index], revenue=round(revenue[index], 2), bookings=counts[index])
        for index in range(start, current + 1)
    ]


def top_destinations(bookings: Sequence[Booking], limit: int = LEADERBOARD_SIZE) -> List[LeaderboardEntry]:
    # Titles are grouped verbatim; near-duplicate titles stay separate entries.
    groups: Dict[str, List[float]] = {}
    for booking in bookings:
        totals = groups.setdefault(booking.trip_title, [0, 0.0])
        totals[0] += 1
        if booking.status == 'confirmed':
            totals[1] += booking.amount

    # sorted() is stable, so ties keep first-seen order.
    ranked = sorted(groups.items(), key=lambda item: item[1][0], reverse=True)[:limit]
    return [
        LeaderboardEntry(rank=position, trip_title=title, bookings=int(totals[0]), revenue=round(totals[1], 2))
        for position, (title, totals) in enumerate(ranked, start=1)
    ]


def format_inr(amount: float) -> str:
    """Format rupees with Indian digit grouping, e.g. ``₹4,25,000``."""
    rounded = round(amount, 2)
    whole = int(rounded)
    paise = int(round((rounded - whole) * 100))
    digits = str(whole)
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        pairs = []
        while len(head) > 2:
            pairs.insert(0, head[-2:])
            head = head[:-2]
        if head:
            pairs.insert(0, head)
        digits = ','.join(pairs + [tail])
    if paise:
        return f'₹{digits}.{paise:02d}'
    return f'₹{digits}'


def relative_time(when: Optional[datetime], now: datetime) -> str:
    if when is None:
        return DATE_PLACEHOLDER
    minutes = int((now - when).total_seconds() // 60)
    if minutes < 1:
        return 'just now'
    if minutes < 60:
        return f'{minutes} min ago'
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


def _activity_timestamp(booking: Booking) -> Optional[datetime]:
    raw_created = parse_booking_datetime(booking.original_data.get('createdAt')) if booking.original_data else None
    return raw_created or booking.created_at or booking.date


def activity_feed(
    bookings: Sequence[Booking],
    now: Optional[datetime] = None,
    limit: int = ACTIVITY_SIZE,
) -> List[ActivityItem]:
    """Most recently created bookings, newest first."""
    now = now or utcnow()
    stamped = [(_activity_timestamp(booking), booking) for booking in bookings]
    stamped.sort(key=lambda pair: (pair[0] is not None, pair[0] or datetime.min), reverse=True)

    items: List[ActivityItem] = []
    for when, booking in stamped[:limit]:
        items.append(
            ActivityItem(
                booking_id=booking.id,
                user=booking.customer_name,
                action=STATUS_VERBS.get(booking.status, booking.status),
                target=booking.trip_title,
                time=relative_time(when, now),
                amount='' if booking.status == 'cancelled' else format_inr(booking.amount),
            )
        )
    return items

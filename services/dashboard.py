"""Assemble the dashboard from the bookings and users endpoints."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .backend_client import BackendClient, BackendError, BackendUnauthorized
from .booking_normaliser import Booking, normalise_bookings
from .booking_stats import (
    ActivityItem,
    DashboardStats,
    LeaderboardEntry,
    MonthBucket,
    activity_feed,
    compute_stats,
    monthly_series,
    top_destinations,
    utcnow,
)

logger = logging.getLogger(__name__)

USERS_PLACEHOLDER = 'N/A'


@dataclass(frozen=True)
class Notice:
    level: str
    message: str

    def as_dict(self) -> dict:
        return {'level': self.level, 'message': self.message}


@dataclass(frozen=True)
class DashboardView:
    stats: DashboardStats
    monthly: List[MonthBucket]
    leaderboard: List[LeaderboardEntry]
    activity: List[ActivityItem]
    total_users: Optional[int]
    notices: List[Notice] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            'stats': self.stats.as_dict(),
            'totalUsers': self.total_users if self.total_users is not None else USERS_PLACEHOLDER,
            'monthly': [bucket.as_dict() for bucket in self.monthly],
            'leaderboard': [entry.as_dict() for entry in self.leaderboard],
            'activity': [item.as_dict() for item in self.activity],
            'notices': [notice.as_dict() for notice in self.notices],
        }


def build_dashboard(
    bookings: List[Booking],
    *,
    total_users: Optional[int] = None,
    now: Optional[datetime] = None,
    notices: Optional[List[Notice]] = None,
) -> DashboardView:
    now = now or utcnow()
    return DashboardView(
        stats=compute_stats(bookings),
        monthly=monthly_series(bookings, today=now),
        leaderboard=top_destinations(bookings),
        activity=activity_feed(bookings, now=now),
        total_users=total_users,
        notices=list(notices or []),
    )


def load_dashboard(client: BackendClient, *, now: Optional[datetime] = None) -> DashboardView:
    """Fetch bookings and the user count side by side; either may fail alone."""
    notices: List[Notice] = []

    with ThreadPoolExecutor(max_workers=2) as pool:
        bookings_future = pool.submit(client.fetch_bookings)
        users_future = pool.submit(client.count_users)

    try:
        records = bookings_future.result()
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        logger.warning('Dashboard bookings fetch failed: %s', exc)
        records = []
        notices.append(Notice('error', 'Failed to load bookings.'))

    total_users: Optional[int]
    try:
        total_users = users_future.result()
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        logger.warning('Dashboard user count failed: %s', exc)
        total_users = None
        notices.append(Notice('warning', 'User count unavailable.'))

    return build_dashboard(normalise_bookings(records), total_users=total_users, now=now, notices=notices)

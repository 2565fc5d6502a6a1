"""Booking manifest: search, ordering and CSV export."""

from __future__ import annotations

import csv
import io
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Sequence

from .booking_normaliser import DATE_PLACEHOLDER, STATUSES, Booking, parse_booking_datetime

CSV_HEADERS = ['ID', 'Customer', 'Phone', 'Trip', 'Date', 'Amount', 'Status', 'Payment ID']


def filter_bookings(bookings: Iterable[Booking], search: str = '', status: str = 'all') -> List[Booking]:
    needle = (search or '').strip().lower()
    wanted = (status or 'all').strip().lower()
    if wanted != 'all' and wanted not in STATUSES:
        return []

    results = []
    for booking in bookings:
        if wanted != 'all' and booking.status != wanted:
            continue
        if needle and not (
            needle in booking.customer_name.lower()
            or needle in booking.id.lower()
            or needle in booking.trip_title.lower()
        ):
            continue
        results.append(booking)
    return results


def _recency_key(record: Any) -> datetime:
    if not isinstance(record, dict):
        return datetime.min
    for key in ('createdAt', 'bookingDate', 'tripDate'):
        value = record.get(key)
        if value in (None, ''):
            continue
        return parse_booking_datetime(value) or datetime.min
    return datetime.min


def sort_records_by_recency(records: Sequence[Any]) -> List[Any]:
    """Newest raw records first; undated records sink to the bottom."""
    return sorted(records, key=_recency_key, reverse=True)


def _format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return f'{amount:.2f}'


def export_csv(bookings: Iterable[Booking]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(CSV_HEADERS)
    for booking in bookings:
        writer.writerow(
            [
                booking.id,
                booking.customer_name,
                booking.phone,
                booking.trip_title,
                booking.date.date().isoformat() if booking.date else DATE_PLACEHOLDER,
                _format_amount(booking.amount),
                booking.status,
                booking.payment_id,
            ]
        )
    return buffer.getvalue()


def manifest_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f'tourdesk_manifest_{today.isoformat()}.csv'

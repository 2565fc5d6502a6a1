"""Map raw backend booking records onto a single canonical view model.

The booking collection has been written by several iterations of the public
site, so the same concept turns up under different keys (``id``/``_id``,
``totalAmount``/``totalPrice``/``amountPaid``...) or not at all. Every field is
resolved through a fixed list of candidate keys and falls back to a sentinel,
so the console can always render a row, whatever shape the record is in.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

STATUSES = ('pending', 'confirmed', 'cancelled')
DEFAULT_STATUS = 'pending'

ONLINE_PAYMENT_LABEL = 'Online (Razorpay)'
DATE_PLACEHOLDER = 'TBD'

# Each logical field lists the raw paths to try, first present one wins.
FIELD_SOURCES = {
    'id': [('id',), ('_id',)],
    'customer_name': [('userDetails', 'name'), ('userDetails', 'fullName')],
    'phone': [('userDetails', 'phone')],
    'email': [('userDetails', 'email')],
    'address': [('userDetails', 'address')],
    'aadhar': [('userDetails', 'aadhar'), ('userDetails', 'aadharNo')],
    'trip_title': [('tripTitle',)],
    'date': [('bookingDate',), ('tripDate',), ('createdAt',)],
    'created_at': [('createdAt',)],
    'seats': [('seats',)],
    'amount': [('totalAmount',), ('totalPrice',), ('amountPaid',)],
    'status': [('status',)],
    'payment_method': [('userDetails', 'paymentMethod')],
    'payment_id': [('paymentId',)],
    'order_id': [('orderId',)],
    'gateway': [('gateway',)],
}

FIELD_DEFAULTS = {
    'customer_name': 'Unknown User',
    'phone': 'N/A',
    'email': 'N/A',
    'address': 'N/A',
    'aadhar': 'N/A',
    'trip_title': 'Unknown Trip',
    'payment_method': 'Pay on Arrival',
    'payment_id': 'Pending / Cash',
    'order_id': '-',
    'gateway': 'Manual',
}


@dataclass(frozen=True)
class Booking:
    """Canonical booking as displayed by the console."""

    id: str
    customer_name: str
    phone: str
    email: str
    address: str
    aadhar: str
    trip_title: str
    date: Optional[datetime]
    created_at: Optional[datetime]
    seats: int
    amount: float
    status: str
    payment_method: str
    payment_id: str
    order_id: str
    gateway: str
    original_data: dict = field(default_factory=dict, compare=False, repr=False)

    def as_view(self) -> dict:
        """JSON view model, keyed the way the console front end expects."""
        return {
            'id': self.id,
            'customerName': self.customer_name,
            'phone': self.phone,
            'email': self.email,
            'address': self.address,
            'aadhar': self.aadhar,
            'tripTitle': self.trip_title,
            'date': _isoformat(self.date),
            'dateDisplay': format_booking_date(self.date),
            'createdAt': _isoformat(self.created_at),
            'seats': self.seats,
            'amount': self.amount,
            'status': self.status,
            'paymentMethod': self.payment_method,
            'paymentId': self.payment_id,
            'orderId': self.order_id,
            'gateway': self.gateway,
        }

    def to_record(self) -> dict:
        """Raw-shaped record that normalises back to an equal booking."""
        record: dict[str, Any] = {
            'id': self.id,
            'userDetails': {
                'name': self.customer_name,
                'phone': self.phone,
                'email': self.email,
                'address': self.address,
                'aadhar': self.aadhar,
                'paymentMethod': self.payment_method,
            },
            'tripTitle': self.trip_title,
            'seats': self.seats,
            'totalAmount': self.amount,
            'status': self.status,
            'paymentId': self.payment_id,
            'orderId': self.order_id,
            'gateway': self.gateway,
        }
        # An unreadable effective date must stay first in line, or createdAt takes over.
        record['bookingDate'] = self.date.isoformat() if self.date is not None else DATE_PLACEHOLDER
        if self.created_at is not None:
            record['createdAt'] = self.created_at.isoformat()
        return record


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _lookup(raw: dict, path: Tuple[str, ...]) -> Any:
    node: Any = raw
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def resolve(raw: dict, name: str) -> Any:
    """Return the first present, non-empty candidate value for ``name``."""
    for path in FIELD_SOURCES[name]:
        value = _lookup(raw, path)
        if not _is_empty(value):
            return value
    return None


def _resolve_text(raw: dict, name: str) -> str:
    value = resolve(raw, name)
    if value is None:
        return FIELD_DEFAULTS[name]
    return str(value).strip()


def _placeholder_id(raw: dict) -> str:
    try:
        blob = json.dumps(raw, sort_keys=True, default=str)
    except (TypeError, ValueError):
        blob = repr(sorted(raw.items(), key=lambda item: str(item[0])))
    digest = hashlib.sha1(blob.encode('utf-8')).hexdigest()[:12]
    return f'missing-{digest}'


def parse_amount(value: Any) -> float:
    """Coerce an amount to a non-negative float, 0.0 when it can't be read."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        cleaned = re.sub(r'[,\s₹]', '', str(value))
        if cleaned.lower().startswith('rs.'):
            cleaned = cleaned[3:]
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def _parse_seats(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 1
    try:
        seats = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 1
    return seats if seats >= 1 else 1


def _parse_status(value: Any) -> str:
    if not isinstance(value, str):
        return DEFAULT_STATUS
    status = value.strip().lower()
    return status if status in STATUSES else DEFAULT_STATUS


def parse_booking_datetime(value: Any) -> Optional[datetime]:
    """Parse the date encodings seen in the booking collection.

    Handles ISO strings (``Z`` suffix included), ``DD-MM-YYYY``, epoch
    milliseconds and Firestore timestamp objects. Aware values are converted to
    naive UTC. Returns ``None`` when nothing matches.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, dict):
        seconds = value.get('_seconds', value.get('seconds'))
        if not isinstance(seconds, (int, float)) or isinstance(seconds, bool):
            return None
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        cleaned = raw[:-1] + '+00:00' if raw.endswith('Z') else raw
        try:
            parsed = datetime.fromisoformat(cleaned)
        except ValueError:
            parsed = None
            for fmt in ('%d-%m-%Y', '%d/%m/%Y', '%d %b %Y'):
                try:
                    parsed = datetime.strptime(raw, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                return None
    else:
        return None

    if parsed.tzinfo is not None:
        return parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_booking_date(value: Optional[datetime]) -> str:
    if value is None:
        return DATE_PLACEHOLDER
    return value.strftime('%d %b %Y')


def normalise_booking(raw: Any) -> Booking:
    """Build a :class:`Booking` from any record shape. Never raises."""
    if not isinstance(raw, dict):
        logger.warning('Booking record is not an object (%s); using empty record', type(raw).__name__)
        raw = {}

    booking_id = resolve(raw, 'id')
    if booking_id is None:
        booking_id = _placeholder_id(raw)
        logger.warning('Booking record without id or _id; using placeholder %s', booking_id)

    if raw.get('paymentMethod') == 'online':
        payment_method = ONLINE_PAYMENT_LABEL
    else:
        payment_method = _resolve_text(raw, 'payment_method')

    return Booking(
        id=str(booking_id).strip(),
        customer_name=_resolve_text(raw, 'customer_name'),
        phone=_resolve_text(raw, 'phone'),
        email=_resolve_text(raw, 'email'),
        address=_resolve_text(raw, 'address'),
        aadhar=_resolve_text(raw, 'aadhar'),
        trip_title=_resolve_text(raw, 'trip_title'),
        date=parse_booking_datetime(resolve(raw, 'date')),
        created_at=parse_booking_datetime(resolve(raw, 'created_at')),
        seats=_parse_seats(resolve(raw, 'seats')),
        amount=parse_amount(resolve(raw, 'amount')),
        status=_parse_status(resolve(raw, 'status')),
        payment_method=payment_method,
        payment_id=_resolve_text(raw, 'payment_id'),
        order_id=_resolve_text(raw, 'order_id'),
        gateway=_resolve_text(raw, 'gateway'),
        original_data=raw,
    )


def normalise_bookings(records: Optional[Iterable[Any]]) -> List[Booking]:
    if not records:
        return []
    return [normalise_booking(record) for record in records]

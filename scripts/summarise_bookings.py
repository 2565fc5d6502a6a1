import json
import sys
from datetime import datetime
from pathlib import Path

from services.booking_normaliser import normalise_bookings
from services.booking_stats import activity_feed, compute_stats, monthly_series, top_destinations

# Usage: python scripts/summarise_bookings.py [bookings.json] [YYYY-MM-DD]
SOURCE_PATH = Path(sys.argv[1]) if len(sys.argv) > 1 else Path('samples/bookings.json')
as_of = datetime.strptime(sys.argv[2], '%Y-%m-%d') if len(sys.argv) > 2 else datetime.now()

records = json.loads(SOURCE_PATH.read_text(encoding='utf-8-sig'))
if isinstance(records, dict):
    records = records.get('bookings') or []

bookings = normalise_bookings(records)
placeholders = [booking.id for booking in bookings if booking.id.startswith('missing-')]

summary = {
    'source': SOURCE_PATH.name,
    'as_of': as_of.date().isoformat(),
    'stats': compute_stats(bookings).as_dict(),
    'monthly': [bucket.as_dict() for bucket in monthly_series(bookings, today=as_of)],
    'top_destinations': [entry.as_dict() for entry in top_destinations(bookings)],
    'recent_activity': [item.as_dict() for item in activity_feed(bookings, now=as_of)],
    'records_without_id': placeholders,
}

print(json.dumps(summary, indent=2, ensure_ascii=False))

from datetime import datetime

import pytest


@pytest.fixture
def raw_bookings():
    """Three schema generations of the same collection."""
    return [
        {
            '_id': 'a1',
            'totalPrice': 1000,
            'userDetails': {'name': 'Amit Sharma', 'phone': '9000000001', 'aadhar': '1111-2222-3333'},
            'tripTitle': 'Darjeeling Escape',
            'status': 'confirmed',
            'createdAt': '2026-03-01T09:00:00Z',
            'paymentMethod': 'online',
            'paymentId': 'pay_001',
        },
        {
            'id': 'a2',
            'totalAmount': 2000,
            'tripTitle': 'Sikkim Silk Route',
            'status': 'pending',
            'createdAt': '2026-03-15',
        },
        {
            'id': 'a3',
            'amountPaid': '8,500',
            'userDetails': {'fullName': 'Sneha G', 'aadharNo': '4444', 'paymentMethod': 'UPI'},
            'tripTitle': 'Darjeeling Escape',
            'tripDate': '2026-05-20',
            'createdAt': {'_seconds': 1777000000, '_nanoseconds': 0},
            'status': 'cancelled',
            'seats': 3,
        },
    ]


@pytest.fixture
def now():
    return datetime(2026, 10, 19, 12, 0, 0)

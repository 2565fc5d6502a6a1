"""Optimistic booking mutations with exact rollback.

The ledger owns the booking snapshot the console is currently showing. A
mutation installs a patched snapshot straight away, then calls the backend; if
the backend refuses, the very same tuple that was there before is put back.
A refresh landing mid-mutation keeps the patch on top of the fresh data, and
then becomes the rollback target instead.
Snapshots are tuples of frozen bookings and are never edited in place.
"""

from __future__ import annotations

import logging
import threading
import dataclasses
from typing import Callable, Iterable, List, Optional, Tuple

from .backend_client import BackendError
from .booking_normaliser import STATUSES, Booking

logger = logging.getLogger(__name__)

Snapshot = Tuple[Booking, ...]
Listener = Callable[[Snapshot], None]


class BookingNotFound(LookupError):
    """Raised when a mutation targets an id that isn't in the snapshot."""


class InvalidStatus(ValueError):
    """Raised for a status outside pending/confirmed/cancelled."""


class MutationInFlight(RuntimeError):
    """Raised when the same booking already has a mutation pending."""


class MutationRejected(RuntimeError):
    """Raised after the backend refused a mutation and the snapshot was restored."""

    def __init__(self, message: str, *, snapshot: Snapshot):
        super().__init__(message)
        self.snapshot = snapshot


class BookingLedger:
    def __init__(self, bookings: Iterable[Booking] = ()) -> None:
        self._snapshot: Snapshot = tuple(bookings)
        self._lock = threading.Lock()
        self._mutation_lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._listeners: List[Listener] = []
        # Snapshot without the in-flight patch, and the patch itself.
        self._base: Optional[Snapshot] = None
        self._pending_patch: Optional[Callable[[Snapshot], Snapshot]] = None

    @property
    def bookings(self) -> Snapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, snapshot: Snapshot) -> None:
        for listener in self._listeners:
            listener(snapshot)

    def replace(self, bookings: Iterable[Booking]) -> Snapshot:
        """Install a freshly fetched snapshot.

        While a mutation is in flight its patch is laid over the fresh data, so
        the optimistic change survives the refresh. A later rollback falls back
        to the fresh data rather than to the older pre-mutation snapshot.
        """
        fresh = tuple(bookings)
        with self._lock:
            if self._pending_patch is None:
                snapshot = fresh
            else:
                self._base = fresh
                snapshot = self._pending_patch(fresh)
            self._snapshot = snapshot
        self._notify(snapshot)
        return snapshot

    def find(self, booking_id: str) -> Booking:
        for booking in self._snapshot:
            if booking.id == booking_id:
                return booking
        raise BookingNotFound(booking_id)

    def is_pending(self, booking_id: str) -> bool:
        with self._lock:
            return booking_id in self._in_flight

    def _claim(self, booking_id: str) -> None:
        with self._lock:
            if booking_id in self._in_flight:
                raise MutationInFlight(f'Booking {booking_id} is already being updated.')
            self._in_flight.add(booking_id)

    def _release(self, booking_id: str) -> None:
        with self._lock:
            self._in_flight.discard(booking_id)

    def _settle(self, *, rollback: bool) -> Snapshot:
        with self._lock:
            base = self._base
            self._pending_patch = None
            self._base = None
            if not rollback:
                return self._snapshot
            self._snapshot = base
        self._notify(base)
        return base

    def _apply(self, booking_id: str, patch: Callable[[Snapshot], Snapshot], send: Callable[[], None], label: str) -> Snapshot:
        self._claim(booking_id)
        try:
            with self._mutation_lock:
                with self._lock:
                    before = self._snapshot
                    if not any(booking.id == booking_id for booking in before):
                        raise BookingNotFound(booking_id)
                    patched = patch(before)
                    self._base = before
                    self._pending_patch = patch
                    self._snapshot = patched
                self._notify(patched)
                try:
                    send()
                except BackendError as exc:
                    logger.warning('%s for booking %s rejected, rolling back: %s', label, booking_id, exc)
                    restored = self._settle(rollback=True)
                    raise MutationRejected(f'{label} failed.', snapshot=restored) from exc
                except Exception:
                    self._settle(rollback=True)
                    raise
                return self._settle(rollback=False)
        finally:
            self._release(booking_id)

    def set_status(self, booking_id: str, new_status: str, send: Callable[[], None]) -> Snapshot:
        if new_status not in STATUSES:
            raise InvalidStatus(f'Unknown booking status: {new_status!r}')

        def patch(snapshot: Snapshot) -> Snapshot:
            return tuple(
                dataclasses.replace(
                    booking,
                    status=new_status,
                    original_data={**booking.original_data, 'status': new_status},
                )
                if booking.id == booking_id
                else booking
                for booking in snapshot
            )

        return self._apply(booking_id, patch, send, 'Status update')

    def delete(self, booking_id: str, send: Callable[[], None]) -> Snapshot:
        def patch(snapshot: Snapshot) -> Snapshot:
            return tuple(booking for booking in snapshot if booking.id != booking_id)

        return self._apply(booking_id, patch, send, 'Deletion')

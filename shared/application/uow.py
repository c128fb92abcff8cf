"""
Unit of Work

One database transaction plus the domain events it produced. Events
reach the message bus only once the outermost transaction has committed;
a rolled back block drops them.
"""

from typing import List
import logging

from django.db import transaction  # type: ignore

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class DjangoUnitOfWork:
    """
    Atomic block that defers event publication to ``transaction.on_commit``

        with DjangoUnitOfWork() as uow:
            lock_property(booking.property_id)
            booking = ledger.transition_to_confirmed(booking.pk)
            uow.record(BookingConfirmed(...))

    Nested inside an outer atomic block, publication waits for the outer
    commit.
    """

    def __init__(self, bus=None):
        self._events: List[DomainEvent] = []
        self._atomic = None
        self._bus = bus

    def __enter__(self):
        self._atomic = transaction.atomic()
        self._atomic.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self._schedule_publication()
            else:
                self._discard()
        finally:
            self._atomic.__exit__(exc_type, exc_val, exc_tb)

    def record(self, event: DomainEvent):
        self._events.append(event)

    def _schedule_publication(self):
        events, self._events = self._events, []
        if events:
            transaction.on_commit(lambda: self._publish(events))

    def _discard(self):
        if self._events:
            logger.warning(f"Transaction rolled back, dropping {len(self._events)} events")
        self._events = []

    def _publish(self, events: List[DomainEvent]):
        bus = self._bus
        if bus is None:
            from shared.application.message_bus import message_bus as bus

        logger.debug(f"Publishing {[event.kind for event in events]}")
        try:
            bus.publish_events(events)
        except Exception:
            # The booking state is committed; a publishing failure must not surface as a request error
            logger.exception("Publishing domain events failed")

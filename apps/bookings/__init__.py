"""Bookings app package.

This app encapsulates the booking lifecycle: the availability oracle,
the booking ledger and its state machine, payment coordination and the
best-effort mirror into the property-management system. Concurrent
check-then-insert sequences for one property are serialized by a row
lock on the property inside a database transaction.
"""

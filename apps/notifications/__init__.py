"""Notifications app package.

Delivers booking lifecycle messages to guests: an in-app notification
record, an email through Django's mail framework and a realtime push to
connected clients. The booking core never calls these channels
directly; it publishes events and Celery tasks hand them to the
dispatcher.
"""

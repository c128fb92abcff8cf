"""
Realtime connection registry.

Tracks which realtime peers (websocket or SSE connections) belong to which
user. The transport adapter calls ``connect`` when a client authenticates
and ``disconnect`` when the socket closes; the dispatcher pushes through
``send_to_user``. A peer is any object with a ``send(event, data)`` method.

All mutation goes through one lock. Sends happen outside it so a slow
peer never blocks registration.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Peer(Protocol):
    def send(self, event: str, data: dict) -> None: ...


class ConnectionRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._peers_by_user: dict[Any, set] = defaultdict(set)
        self._user_by_peer: dict[Any, Any] = {}

    def connect(self, user_id, peer: Peer) -> None:
        with self._lock:
            previous = self._user_by_peer.get(peer)
            if previous is not None and previous != user_id:
                self._discard(peer, previous)
            self._peers_by_user[user_id].add(peer)
            self._user_by_peer[peer] = user_id
        logger.debug(f"Realtime peer connected for user {user_id}")

    def disconnect(self, peer: Peer) -> None:
        with self._lock:
            user_id = self._user_by_peer.pop(peer, None)
            if user_id is not None:
                self._discard(peer, user_id)
        if user_id is not None:
            logger.debug(f"Realtime peer disconnected for user {user_id}")

    def _discard(self, peer, user_id) -> None:
        peers = self._peers_by_user.get(user_id)
        if peers is None:
            return
        peers.discard(peer)
        if not peers:
            del self._peers_by_user[user_id]

    def is_connected(self, user_id) -> bool:
        with self._lock:
            return bool(self._peers_by_user.get(user_id))

    def peers_for(self, user_id) -> list:
        with self._lock:
            return list(self._peers_by_user.get(user_id, ()))

    def send_to_user(self, user_id, event: str, data: dict) -> int:
        """Push to every peer of the user; returns how many peers accepted it."""
        return self._deliver(self.peers_for(user_id), event, data)

    def broadcast(self, event: str, data: dict) -> int:
        with self._lock:
            peers = list(self._user_by_peer)
        return self._deliver(peers, event, data)

    def _deliver(self, peers, event: str, data: dict) -> int:
        delivered = 0
        for peer in peers:
            try:
                peer.send(event, data)
            except Exception as e:
                logger.warning(f"Realtime send of {event} failed, dropping peer: {e}")
                self.disconnect(peer)
                continue
            delivered += 1
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._peers_by_user.clear()
            self._user_by_peer.clear()


connection_registry = ConnectionRegistry()

"""
Process-wide event hub.

Keeps a live mapping of user identity → the sessions currently connected for
that user (a "room") and fans named events out to every session in a room.

  join(identity, session)   — add a session to the identity's room
  leave(session)            — drop a session from whatever room holds it
  publish(identities, e, p) — hand payload p under event e to every session
                              joined under any of the identities

Delivery is best-effort and at-most-once per session: nothing is queued for
offline users and nothing is retried. Durable state lives in the store.

The hub is built once at startup and handed to the components that push;
join/leave/publish never await, so callers see them as synchronous.
"""
import logging
import threading
from collections import defaultdict
from typing import Any, Iterable, Protocol, Union

from socialhub.telemetry import REALTIME_CONNECTIONS, REALTIME_EVENTS_TOTAL

logger = logging.getLogger(__name__)


class Session(Protocol):
    def deliver(self, event: str, payload: Any) -> bool:
        """Accept one event without blocking; False if it was dropped."""


class EventHub:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rooms: dict[str, set[Session]] = defaultdict(set)
        self._members: dict[Session, str] = {}

    def join(self, identity: str, session: Session) -> None:
        with self._lock:
            previous = self._members.get(session)
            if previous == identity:
                return
            if previous is not None:
                self._discard(previous, session)
            else:
                REALTIME_CONNECTIONS.inc()
            self._rooms[identity].add(session)
            self._members[session] = identity
        logger.debug("Session joined room %s", identity)

    def leave(self, session: Session) -> None:
        with self._lock:
            identity = self._members.pop(session, None)
            if identity is None:
                return
            self._discard(identity, session)
            REALTIME_CONNECTIONS.dec()
        logger.debug("Session left room %s", identity)

    def _discard(self, identity: str, session: Session) -> None:
        room = self._rooms.get(identity)
        if room is None:
            return
        room.discard(session)
        if not room:
            del self._rooms[identity]

    def publish(
        self,
        identities: Union[str, Iterable[str]],
        event: str,
        payload: Any = None,
    ) -> int:
        """Fan ``payload`` out under ``event``; returns how many sessions took it."""
        if isinstance(identities, str):
            identities = (identities,)

        with self._lock:
            # A session reachable through two identities still gets one copy
            targets: set[Session] = set()
            for identity in identities:
                targets.update(self._rooms.get(identity, ()))

        if not targets:
            logger.debug("No live sessions for %s event", event)
            return 0

        delivered = sum(1 for session in targets if session.deliver(event, payload))
        REALTIME_EVENTS_TOTAL.labels(event=event).inc(delivered)
        return delivered

    def sessions_for(self, identity: str) -> int:
        with self._lock:
            return len(self._rooms.get(identity, ()))

    def is_online(self, identity: str) -> bool:
        return self.sessions_for(identity) > 0

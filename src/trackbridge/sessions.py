"""
Session registry for DSU clients subscribed to pad data.

A client becomes a broadcast recipient by sending any PadData request and
stays one for as long as it keeps re-sending requests within the idle timeout.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, List, Optional, Tuple


DEFAULT_SESSION_TIMEOUT = 5.0  # seconds

Endpoint = Hashable


@dataclass
class ClientSession:
    """Bookkeeping for one subscribed client endpoint."""
    endpoint: Endpoint
    last_access_time: float
    last_packet_count: int = 0


class SessionRegistry:
    """
    Thread-safe map of client endpoint -> session.

    touch() is called from the DSU receive path, broadcast_round() from the
    broadcast worker; both run under the same lock so that counter increments
    and evictions are atomic with the lookup.

    Usage:
        registry = SessionRegistry()
        registry.touch(("127.0.0.1", 50000))
        for endpoint, packet_number in registry.broadcast_round():
            send(endpoint, packet_number)
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_SESSION_TIMEOUT,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            timeout_seconds: Idle time after which a session is evicted
            clock: Monotonic time source in seconds (default: time.monotonic)
        """
        self.timeout_seconds = timeout_seconds
        self._clock = clock or time.monotonic
        self._sessions: Dict[Endpoint, ClientSession] = {}
        self._lock = threading.Lock()

        self._sessions_created = 0
        self._sessions_evicted = 0

    def touch(self, endpoint: Endpoint, now: Optional[float] = None) -> bool:
        """
        Register an endpoint or refresh its last access time.

        Returns:
            True if a new session was created
        """
        if now is None:
            now = self._clock()

        with self._lock:
            session = self._sessions.get(endpoint)
            if session is not None:
                session.last_access_time = now
                return False

            self._sessions[endpoint] = ClientSession(endpoint=endpoint, last_access_time=now)
            self._sessions_created += 1
            return True

    def broadcast_round(self, now: Optional[float] = None) -> List[Tuple[Endpoint, int]]:
        """
        Collect recipients for one broadcast and advance their counters.

        Sessions idle for longer than the timeout are excluded and removed
        once the scan completes.

        Returns:
            (endpoint, packet_number) for each live session
        """
        if now is None:
            now = self._clock()

        recipients: List[Tuple[Endpoint, int]] = []
        with self._lock:
            expired = []
            for endpoint, session in self._sessions.items():
                if now - session.last_access_time > self.timeout_seconds:
                    expired.append(endpoint)
                    continue
                recipients.append((endpoint, session.last_packet_count))
                session.last_packet_count = (session.last_packet_count + 1) & 0xFFFFFFFF

            for endpoint in expired:
                del self._sessions[endpoint]
            self._sessions_evicted += len(expired)

        return recipients

    def get(self, endpoint: Endpoint) -> Optional[ClientSession]:
        """Snapshot of a session, or None."""
        with self._lock:
            session = self._sessions.get(endpoint)
            if session is None:
                return None
            return ClientSession(
                endpoint=session.endpoint,
                last_access_time=session.last_access_time,
                last_packet_count=session.last_packet_count,
            )

    def endpoints(self) -> List[Endpoint]:
        with self._lock:
            return list(self._sessions.keys())

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "active_sessions": len(self._sessions),
                "sessions_created": self._sessions_created,
                "sessions_evicted": self._sessions_evicted,
            }

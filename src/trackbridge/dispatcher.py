"""
Routes validated DSU client requests to a reply or a registration.
"""

import threading
from collections import defaultdict
from typing import Dict, Optional

from .packets import build_port_response, build_version_response
from .protocol import DecodedFrame, FrameError, MessageType, decode_frame
from .sessions import Endpoint, SessionRegistry


class MessageDispatcher:
    """
    Stateless per-message handler; the only cross-message state lives in the
    session registry.

    Usage:
        dispatcher = MessageDispatcher(registry, server_id=0x1234)
        reply = dispatcher.handle_datagram(data, addr)
        if reply:
            sock.sendto(reply, addr)
    """

    def __init__(self, registry: SessionRegistry, server_id: int):
        self.registry = registry
        self.server_id = server_id

        self._stats_lock = threading.Lock()
        self._requests: Dict[str, int] = defaultdict(int)
        self._rejected: Dict[str, int] = defaultdict(int)
        self._unknown = 0

    def handle_datagram(self, data: bytes, endpoint: Endpoint) -> Optional[bytes]:
        """
        Decode and dispatch one datagram.

        Returns:
            Reply frame to send back to the endpoint, or None
        """
        try:
            frame = decode_frame(data)
        except FrameError as e:
            with self._stats_lock:
                self._rejected[e.reason] += 1
            return None
        return self.dispatch(frame, endpoint)

    def dispatch(self, frame: DecodedFrame, endpoint: Endpoint) -> Optional[bytes]:
        """Act on a validated frame."""
        try:
            message_type = MessageType(frame.message_type)
        except ValueError:
            with self._stats_lock:
                self._unknown += 1
            return None

        with self._stats_lock:
            self._requests[message_type.name.lower()] += 1

        if message_type is MessageType.VERSION:
            return build_version_response(self.server_id)
        if message_type is MessageType.PORTS:
            return build_port_response(self.server_id)

        # PadData: slot/MAC selector in the payload is ignored
        self.registry.touch(endpoint)
        return None

    @property
    def stats(self) -> Dict[str, object]:
        with self._stats_lock:
            return {
                "requests": dict(self._requests),
                "rejected": dict(self._rejected),
                "unknown_types": self._unknown,
            }

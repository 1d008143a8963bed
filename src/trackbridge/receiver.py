"""
UDP listeners for the tracking source and for DSU clients.

Provides functionality to:
- Own one UDP socket per endpoint with a dedicated receive thread
- Decode tracking-source datagrams (six little-endian doubles)
- Answer DSU client requests and broadcast pad data to subscribed clients
"""

import random
import socket
import struct
import sys
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from .dispatcher import MessageDispatcher
from .packets import build_pad_data_response, now_us
from .sessions import DEFAULT_SESSION_TIMEOUT, SessionRegistry
from .transform import PoseSample


TRACKING_FMT = "<6d"
TRACKING_DATAGRAM_SIZE = struct.calcsize(TRACKING_FMT)  # 48

# IOC_IN | IOC_VENDOR | 12
SIO_UDP_CONNRESET = 0x80000000 | 0x18000000 | 12


def decode_tracking_datagram(data: bytes) -> Optional[PoseSample]:
    """Decode x, y, z, yaw, pitch, roll; None if the datagram is too short."""
    if len(data) < TRACKING_DATAGRAM_SIZE:
        return None
    return PoseSample(*struct.unpack_from(TRACKING_FMT, data, 0))


def encode_tracking_datagram(sample: PoseSample) -> bytes:
    return struct.pack(
        TRACKING_FMT,
        sample.x, sample.y, sample.z,
        sample.yaw, sample.pitch, sample.roll,
    )


class UDPListener:
    """
    Base UDP listener with a blocking receive loop on its own thread.

    The socket uses a short timeout so the loop notices stop() promptly.
    Subclasses implement _handle_datagram().

    Usage:
        listener = TrackingReceiver(port=4242)
        listener.start()
        # ... receive ...
        listener.stop()
    """

    name = "udp"

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 0,
        buffer_size: int = 1024,
        poll_interval: float = 0.1
    ):
        """
        Args:
            host: Address to bind
            port: UDP port to bind (0 picks a free port)
            buffer_size: Largest datagram accepted by recvfrom
            poll_interval: Socket timeout used to re-check the running flag
        """
        self.host = host
        self.port = port
        self.buffer_size = buffer_size
        self.poll_interval = poll_interval

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None

        self._error_callback: Optional[Callable[[Exception], None]] = None

        # Statistics
        self._datagrams_received = 0
        self._bytes_received = 0
        self._datagrams_sent = 0
        self._send_errors = 0
        self._socket_errors = 0
        self._errors = 0

    def set_error_callback(self, callback: Callable[[Exception], None]) -> None:
        """Set callback for receive-path errors."""
        self._error_callback = callback

    def start(self) -> None:
        """Bind the socket and start the receive thread."""
        if self._running:
            return

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise
        sock.settimeout(self.poll_interval)
        self._socket = sock
        self._ignore_connection_reset()

        self._running = True
        self._thread = threading.Thread(
            target=self._receive_loop, name=f"{self.name}-receiver", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the receive loop, wait for it, then close the socket."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self._socket:
            self._socket.close()
            self._socket = None

    def send_to(self, data: bytes, endpoint: Tuple[str, int]) -> bool:
        """Fire-and-forget send; failures are counted, never raised."""
        sock = self._socket
        if sock is None:
            return False
        try:
            sock.sendto(data, endpoint)
        except OSError:
            self._send_errors += 1
            return False
        self._datagrams_sent += 1
        return True

    def _ignore_connection_reset(self) -> None:
        """
        Ask Windows not to surface ICMP port-unreachable as a receive error.

        Best effort; no-op elsewhere or when the control is not supported.
        """
        if sys.platform != "win32" or self._socket is None:
            return
        control = getattr(socket, "SIO_UDP_CONNRESET", SIO_UDP_CONNRESET)
        try:
            self._socket.ioctl(control, False)
        except (OSError, ValueError):
            pass

    def _receive_loop(self) -> None:
        """Main receive loop."""
        while self._running:
            sock = self._socket
            if sock is None:
                break
            try:
                data, addr = sock.recvfrom(self.buffer_size)
            except socket.timeout:
                continue
            except OSError as e:
                if not self._running:
                    break
                self._socket_errors += 1
                self._ignore_connection_reset()
                self._on_socket_error(e)
                continue

            self._datagrams_received += 1
            self._bytes_received += len(data)

            try:
                self._handle_datagram(data, addr)
            except Exception as e:
                self._errors += 1
                if self._error_callback:
                    self._error_callback(e)

    def _on_socket_error(self, error: OSError) -> None:
        if self._error_callback:
            self._error_callback(error)

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        raise NotImplementedError

    @property
    def address(self) -> Optional[Tuple[Any, ...]]:
        """Bound socket address, once started (IPv6 adds flowinfo and scope id)."""
        if self._socket is None:
            return None
        return self._socket.getsockname()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> Dict[str, int]:
        """Get listener statistics."""
        return {
            "datagrams_received": self._datagrams_received,
            "bytes_received": self._bytes_received,
            "datagrams_sent": self._datagrams_sent,
            "send_errors": self._send_errors,
            "socket_errors": self._socket_errors,
            "errors": self._errors,
        }


class TrackingReceiver(UDPListener):
    """
    Receives absolute pose datagrams from the tracking source.

    Each datagram of at least 48 bytes is decoded and passed to the sample
    callback; shorter datagrams are dropped.
    """

    name = "tracking"

    def __init__(self, host: str = "0.0.0.0", port: int = 4242, **kwargs: Any):
        super().__init__(host=host, port=port, **kwargs)
        self._sample_callback: Optional[Callable[[PoseSample], None]] = None
        self._socket_error_callback: Optional[Callable[[OSError], None]] = None
        self._samples_received = 0
        self._dropped = 0

    def set_sample_callback(self, callback: Callable[[PoseSample], None]) -> None:
        self._sample_callback = callback

    def set_socket_error_callback(self, callback: Callable[[OSError], None]) -> None:
        """Called on transient socket errors, after the error callback."""
        self._socket_error_callback = callback

    def _on_socket_error(self, error: OSError) -> None:
        super()._on_socket_error(error)
        if self._socket_error_callback:
            self._socket_error_callback(error)

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        sample = decode_tracking_datagram(data)
        if sample is None:
            self._dropped += 1
            return
        self._samples_received += 1
        if self._sample_callback:
            self._sample_callback(sample)

    @property
    def stats(self) -> Dict[str, int]:
        stats = super().stats
        stats["samples_received"] = self._samples_received
        stats["dropped_undersized"] = self._dropped
        return stats


class DSUServer(UDPListener):
    """
    DSU server endpoint.

    Answers Version and Ports requests, registers PadData subscribers, and
    sends one PadData frame per live client on each broadcast().

    Usage:
        server = DSUServer(port=26760)
        server.start()
        server.broadcast(PoseSample(yaw=12.5))
        server.stop()
    """

    name = "dsu"

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 26760,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        server_id: Optional[int] = None,
        registry: Optional[SessionRegistry] = None,
        **kwargs: Any
    ):
        super().__init__(host=host, port=port, **kwargs)
        self.registry = registry or SessionRegistry(timeout_seconds=session_timeout)
        self.server_id = server_id if server_id is not None else random.getrandbits(32)
        self.dispatcher = MessageDispatcher(self.registry, self.server_id)

        self._broadcasts = 0
        self._pad_data_sent = 0
        self.last_recipient_count = 0

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        reply = self.dispatcher.handle_datagram(data, addr)
        if reply is not None:
            self.send_to(reply, addr)

    def broadcast(self, sample: PoseSample) -> int:
        """
        Send a PadData frame for the sample to every live client.

        Returns:
            Number of frames sent successfully
        """
        recipients = self.registry.broadcast_round()
        self._broadcasts += 1
        self.last_recipient_count = len(recipients)
        if not recipients:
            return 0

        timestamp = now_us()
        sent = 0
        for endpoint, packet_number in recipients:
            frame = build_pad_data_response(self.server_id, packet_number, sample, timestamp)
            if self.send_to(frame, endpoint):
                sent += 1
        self._pad_data_sent += sent
        return sent

    @property
    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(super().stats)
        stats["broadcasts"] = self._broadcasts
        stats["pad_data_sent"] = self._pad_data_sent
        stats["sessions"] = self.registry.stats
        stats["dispatcher"] = self.dispatcher.stats
        return stats

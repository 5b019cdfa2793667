"""ZeroMQ transport for the RTDB message bus."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

import zmq

from gridloss.errors import BusError

logger = logging.getLogger(__name__)

ReceiveHandler = Callable[[List[bytes]], None]


class ZmqBus:
    """
    A fixed number of PUB and SUB sockets driven by one polling loop.

    Subscribers deliver every multipart message to their receive handler on
    the thread that runs ``waiting_loop``. Publishers may be used from any
    single other thread; sends are serialized per socket.
    """

    def __init__(
        self,
        max_publishers: int = 1,
        max_subscribers: int = 1,
        poll_interval_ms: int = 500,
    ) -> None:
        self.max_publishers = max_publishers
        self.max_subscribers = max_subscribers
        self.poll_interval_ms = poll_interval_ms

        try:
            self.context = zmq.Context()
        except zmq.ZMQError as e:
            raise BusError(f"cannot create zmq context: {e}") from e

        self._publishers: List[zmq.Socket] = []
        self._publisher_locks: List[threading.Lock] = []
        self._subscribers: List[zmq.Socket] = []
        self._handlers: Dict[int, ReceiveHandler] = {}

        self._stop_event = threading.Event()
        self._stop_error: Optional[BaseException] = None

    def add_subscriber(self, endpoint: str) -> int:
        """Connect a SUB socket subscribed to every topic and return its index."""
        if len(self._subscribers) >= self.max_subscribers:
            raise BusError(f"subscriber limit {self.max_subscribers} reached")
        socket = self._socket(zmq.SUB)
        try:
            socket.setsockopt(zmq.SUBSCRIBE, b"")
            socket.connect(endpoint)
        except zmq.ZMQError as e:
            socket.close(linger=0)
            raise BusError(f"cannot subscribe to [{endpoint}]: {e}") from e

        self._subscribers.append(socket)
        logger.info(f"Subscribed to {endpoint}")
        return len(self._subscribers) - 1

    def add_publisher(self, endpoint: str) -> int:
        """Connect a PUB socket and return its index."""
        if len(self._publishers) >= self.max_publishers:
            raise BusError(f"publisher limit {self.max_publishers} reached")
        socket = self._socket(zmq.PUB)
        try:
            socket.connect(endpoint)
        except zmq.ZMQError as e:
            socket.close(linger=0)
            raise BusError(f"cannot publish to [{endpoint}]: {e}") from e

        self._publishers.append(socket)
        self._publisher_locks.append(threading.Lock())
        logger.info(f"Publishing to {endpoint}")
        return len(self._publishers) - 1

    def set_receive_handler(self, subscriber_idx: int, handler: ReceiveHandler) -> None:
        if not 0 <= subscriber_idx < len(self._subscribers):
            raise BusError(f"no subscriber with index {subscriber_idx}")
        self._handlers[subscriber_idx] = handler

    def send(self, publisher_idx: int, data: bytes) -> int:
        """
        Publish one message.

        Returns:
            Number of bytes sent

        Raises:
            BusError: If the publisher does not exist or the send fails
        """
        if not 0 <= publisher_idx < len(self._publishers):
            raise BusError(f"no publisher with index {publisher_idx}")
        try:
            with self._publisher_locks[publisher_idx]:
                self._publishers[publisher_idx].send(data)
        except zmq.ZMQError as e:
            raise BusError(f"send failed: {e}") from e
        return len(data)

    def waiting_loop(self) -> Optional[BaseException]:
        """
        Poll subscribers until stop() is called.

        Returns:
            The error passed to stop(), or None on a clean stop
        """
        poller = zmq.Poller()
        for socket in self._subscribers:
            poller.register(socket, zmq.POLLIN)

        while not self._stop_event.is_set():
            try:
                events = dict(poller.poll(self.poll_interval_ms))
            except zmq.ZMQError as e:
                if self._stop_event.is_set():
                    break
                self._stop_error = BusError(f"poll failed: {e}")
                break

            for idx, socket in enumerate(self._subscribers):
                if socket not in events:
                    continue
                try:
                    frames = socket.recv_multipart(zmq.NOBLOCK)
                except zmq.Again:
                    continue
                except zmq.ZMQError as e:
                    logger.error(f"Failed to receive on subscriber {idx}: {e}")
                    continue

                handler = self._handlers.get(idx)
                if handler is None:
                    continue
                try:
                    handler(frames)
                except Exception as e:
                    logger.error(f"Receive handler for subscriber {idx} failed: {e}")

        return self._stop_error

    def stop(self, error: Optional[BaseException] = None) -> None:
        """Ask the waiting loop to return; safe to call from any thread."""
        if error is not None and self._stop_error is None:
            self._stop_error = error
        self._stop_event.set()

    def close(self) -> None:
        for socket in self._subscribers + self._publishers:
            socket.close(linger=0)
        self.context.term()

    def _socket(self, socket_type: int) -> zmq.Socket:
        try:
            return self.context.socket(socket_type)
        except zmq.ZMQError as e:
            raise BusError(f"cannot create socket: {e}") from e

"""
Simulated rider/driver chat.

There is no chat backend: a ChannelSimulator keeps an append-only message
log for one room and delivers messages after small fixed delays through an
injectable scheduler. Tests use ManualScheduler to run deliveries
synchronously; the process-wide registry uses ThreadingScheduler so plain
Django views can drive it without an event loop.
"""

import asyncio
import heapq
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, List, Optional

from django.conf import settings
from django.utils.module_loading import import_string

from ..exceptions import NotConnected

logger = logging.getLogger(__name__)

SYSTEM_SENDER = 'System'
RIDER_SENDER = 'You'


@dataclass(frozen=True)
class ChatMessage:
    sender: str
    text: str

    def to_dict(self) -> dict:
        return {'sender': self.sender, 'text': self.text}


# ---------------------- Schedulers ----------------------

class AsyncioScheduler:
    """Runs callbacks on an asyncio event loop via call_later."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop

    def schedule(self, delay: float, callback: Callable[[], None]):
        loop = self.loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class ThreadingScheduler:
    """Runs callbacks on daemon timer threads."""

    def schedule(self, delay: float, callback: Callable[[], None]):
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class ManualScheduler:
    """
    Deterministic scheduler driven by explicit clock advances.

    Callbacks due at the same instant run in the order they were scheduled.
    """

    def __init__(self):
        self.now = 0.0
        self._pending = []
        self._sequence = itertools.count()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, delay: float, callback: Callable[[], None]):
        heapq.heappush(self._pending, (self.now + delay, next(self._sequence), callback))

    def advance(self, seconds: Optional[float] = None) -> int:
        """
        Move the clock forward, running every callback that falls due.

        With no argument, runs until nothing is pending. Returns the number
        of callbacks run.
        """
        target = None if seconds is None else self.now + seconds
        ran = 0
        while self._pending and (target is None or self._pending[0][0] <= target):
            due, _, callback = heapq.heappop(self._pending)
            self.now = max(self.now, due)
            callback()
            ran += 1
        if target is not None:
            self.now = target
        return ran


# ---------------------- Channel ----------------------

class ChannelSimulator:
    """
    One chat room with two participants and no network.

    join() empties the log and posts a System welcome after a delay;
    send() appends after a shorter delay, in call order; leave() drops the
    log together with any delivery still pending for the room.
    """

    def __init__(self, scheduler=None, welcome_delay: Optional[float] = None, send_delay: Optional[float] = None):
        self.scheduler = scheduler or ThreadingScheduler()
        self.welcome_delay = welcome_delay if welcome_delay is not None else settings.CHAT_WELCOME_DELAY_SECONDS
        self.send_delay = send_delay if send_delay is not None else settings.CHAT_SEND_DELAY_SECONDS
        self.room_id: Optional[str] = None
        self.connected = False
        self._messages: List[ChatMessage] = []
        self._outbox = deque()
        self._generation = 0
        self._listeners: List[Callable[[ChatMessage], None]] = []
        self._lock = threading.RLock()

    @property
    def messages(self) -> List[ChatMessage]:
        with self._lock:
            return list(self._messages)

    @property
    def has_listeners(self) -> bool:
        with self._lock:
            return bool(self._listeners)

    def add_listener(self, listener: Callable[[ChatMessage], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[ChatMessage], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def join(self, room_id: str) -> None:
        with self._lock:
            self._generation += 1
            generation = self._generation
            self.room_id = room_id
            self.connected = True
            self._messages = []
            self._outbox.clear()

        logger.info(f"Joined room: {room_id}")
        welcome = ChatMessage(SYSTEM_SENDER, f"Welcome to the chat room: {room_id}")
        self.scheduler.schedule(self.welcome_delay, partial(self._append, generation, welcome))

    def send(self, text: str, sender: str = RIDER_SENDER) -> None:
        """
        Queue a message for delivery.

        Raises:
            NotConnected: If the room is not joined; the message is dropped
        """
        with self._lock:
            if not self.connected:
                logger.error("Chat is not connected. Unable to send message.")
                raise NotConnected()
            generation = self._generation
            self._outbox.append(ChatMessage(sender, text))

        self.scheduler.schedule(self.send_delay, partial(self._deliver_next, generation))

    def leave(self) -> None:
        with self._lock:
            if not self.connected:
                return
            room_id = self.room_id
            self._generation += 1
            self.connected = False
            self._messages = []
            self._outbox.clear()
        logger.info(f"Left room: {room_id}")

    def clear(self) -> None:
        """Empty the log without leaving the room."""
        with self._lock:
            self._messages = []

    def _deliver_next(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._outbox:
                return
            message = self._outbox.popleft()
            self._messages.append(message)
            listeners = list(self._listeners)
        self._notify(listeners, message)

    def _append(self, generation: int, message: ChatMessage) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._messages.append(message)
            listeners = list(self._listeners)
        self._notify(listeners, message)

    @staticmethod
    def _notify(listeners, message: ChatMessage) -> None:
        for listener in listeners:
            try:
                listener(message)
            except Exception:
                logger.exception("Chat listener failed")


# ---------------------- Registry ----------------------

_channels: Dict[str, ChannelSimulator] = {}
_channels_lock = threading.Lock()


def get_chat_channel(session_key: str) -> ChannelSimulator:
    """Return the session's chat channel, creating it on first use."""
    with _channels_lock:
        channel = _channels.get(session_key)
        if channel is None:
            scheduler_class = import_string(settings.CHAT_SCHEDULER_CLASS)
            channel = ChannelSimulator(scheduler=scheduler_class())
            _channels[session_key] = channel
        return channel


def find_chat_channel(session_key: str) -> Optional[ChannelSimulator]:
    """Return the session's chat channel if one exists, without creating it."""
    with _channels_lock:
        return _channels.get(session_key)


def release_chat_channel(session_key: str) -> None:
    """Forget the session's chat channel once no room is joined and nobody is listening."""
    with _channels_lock:
        channel = _channels.get(session_key)
        if channel is not None and not channel.connected and not channel.has_listeners:
            del _channels[session_key]


def discard_chat_channel(session_key: str) -> None:
    """Leave and forget the session's chat channel."""
    with _channels_lock:
        channel = _channels.pop(session_key, None)
    if channel is not None:
        channel.leave()

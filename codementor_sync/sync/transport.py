"""Broadcast transports: the same-origin fan-out primitive under the sync bus."""

from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict], None]


class TransportUnavailable(RuntimeError):
    """Raised by a transport factory when no broadcast primitive exists."""


class BroadcastTransport(ABC):
    """A named channel. Messages posted reach every *other* open channel
    with the same name; the sender never hears its own message."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.on_message: MessageHandler | None = None

    @abstractmethod
    def post_message(self, message: dict) -> None:
        """Fire-and-forget send to sibling channels."""

    @abstractmethod
    def close(self) -> None:
        """Stop sending and receiving. Idempotent."""

    def _dispatch(self, message: dict) -> None:
        handler = self.on_message
        if handler is not None:
            handler(message)


class LocalChannel(BroadcastTransport):
    """Channel registered with a ``LocalBroadcastHub``."""

    def __init__(self, name: str, hub: LocalBroadcastHub) -> None:
        super().__init__(name)
        self._hub = hub
        self.closed = False

    def post_message(self, message: dict) -> None:
        if self.closed:
            return
        self._hub._fan_out(self, message)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.on_message = None
        self._hub._unregister(self)


class LocalBroadcastHub:
    """In-process stand-in for a browser's broadcast channel registry.

    Each "tab" opens its own channel. Messages are deep-copied per
    receiver, approximating structured-clone semantics. With
    ``loop`` set, delivery is scheduled through ``loop.call_soon`` (FIFO
    per sender, asynchronous to the poster); otherwise delivery is
    synchronous.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.loop = loop
        self._channels: dict[str, list[LocalChannel]] = {}

    def open(self, name: str) -> LocalChannel:
        channel = LocalChannel(name, self)
        self._channels.setdefault(name, []).append(channel)
        return channel

    def channel_count(self, name: str) -> int:
        return len(self._channels.get(name, []))

    def _unregister(self, channel: LocalChannel) -> None:
        peers = self._channels.get(channel.name, [])
        if channel in peers:
            peers.remove(channel)
        if not peers:
            self._channels.pop(channel.name, None)

    def _fan_out(self, sender: LocalChannel, message: Any) -> None:
        for peer in list(self._channels.get(sender.name, [])):
            if peer is sender:
                continue
            payload = copy.deepcopy(message)
            if self.loop is not None:
                self.loop.call_soon(self._deliver, peer, payload)
            else:
                self._deliver(peer, payload)

    @staticmethod
    def _deliver(peer: LocalChannel, message: dict) -> None:
        if peer.closed:
            return
        peer._dispatch(message)


default_hub = LocalBroadcastHub()


def unavailable_transport(name: str) -> BroadcastTransport:
    """Factory for environments without a broadcast primitive."""
    raise TransportUnavailable(f"No broadcast primitive available for channel '{name}'")

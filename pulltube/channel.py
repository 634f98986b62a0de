"""Asynchronous message channel between the orchestrator and its peers.

Peers never share state; they exchange plain ``dict`` messages:

- Tab endpoints (the playlist collector) answer requests addressed to a
  tab id via :meth:`MessageChannel.send_to_tab`.
- Runtime messages (permission decisions) are broadcast with
  :meth:`MessageChannel.publish` to every listener.
- A runtime request handler answers queries such as ``getStoredUrls``.

Example usage:

    channel = MessageChannel()
    channel.register_endpoint(7, collector_service.handle)
    reply = await channel.send_to_tab(7, {"action": "ping"})

    decision = channel.wait_for(lambda m: m.get("action") == "permission_denied")
    channel.publish({"action": "permission_denied"})
    await decision
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

Message = Dict[str, Any]
Reply = Optional[Message]
EndpointHandler = Callable[[Message], Awaitable[Reply]]
Listener = Callable[[Message], None]
MessagePredicate = Callable[[Message], bool]


class ChannelError(RuntimeError):
    """Raised when a message cannot be delivered to its receiver."""


class MessageChannel:
    """Request/response and broadcast messaging for isolated components."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._endpoints: Dict[int, EndpointHandler] = {}
        self._listeners: List[Listener] = []
        self._request_handler: Optional[EndpointHandler] = None
        self._log = logger or LOGGER

    # -- tab endpoints -----------------------------------------------------

    def register_endpoint(self, tab_id: int, handler: EndpointHandler) -> None:
        self._endpoints[tab_id] = handler

    def unregister_endpoint(self, tab_id: int) -> None:
        self._endpoints.pop(tab_id, None)

    def has_endpoint(self, tab_id: int) -> bool:
        return tab_id in self._endpoints

    async def send_to_tab(self, tab_id: int, message: Message) -> Reply:
        """Deliver *message* to the endpoint resident in *tab_id*.

        Raises:
            ChannelError: If nothing is listening in that tab.
        """
        handler = self._endpoints.get(tab_id)
        if handler is None:
            raise ChannelError(
                f"Could not establish connection: no receiver in tab {tab_id}"
            )
        return await handler(message)

    # -- runtime messages --------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, message: Message) -> None:
        """Broadcast a runtime message to every current listener."""
        self._log.debug("Runtime message: %s", message)
        for listener in list(self._listeners):
            listener(message)

    def wait_for(self, predicate: MessagePredicate) -> "asyncio.Future[Message]":
        """Return a future resolved by the first published message matching
        *predicate*.

        The listener detaches itself on that first match, so a second
        matching message can never resolve the same wait twice.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Message] = loop.create_future()

        def listener(message: Message) -> None:
            if future.done() or not predicate(message):
                return
            self.remove_listener(listener)
            future.set_result(message)

        self.add_listener(listener)
        future.add_done_callback(lambda _: self.remove_listener(listener))
        return future

    # -- runtime requests --------------------------------------------------

    def set_request_handler(self, handler: Optional[EndpointHandler]) -> None:
        self._request_handler = handler

    async def request(self, message: Message) -> Reply:
        """Send a runtime request (e.g. from the popup) and await the reply."""
        if self._request_handler is None:
            raise ChannelError("No runtime request handler registered")
        return await self._request_handler(message)

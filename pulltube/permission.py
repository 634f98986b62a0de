"""User consent gate in front of the external handoff."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol, Set

from .channel import Message, MessageChannel
from .store import KeyValueStore, is_always_allowed, set_always_allow

LOGGER = logging.getLogger(__name__)

PERMISSION_GRANTED = "permission_granted"
PERMISSION_DENIED = "permission_denied"

PROMPT_TEXT = "Allow sending these videos to Pulltube?"


class PermissionPrompt(Protocol):
    async def open(self) -> None:
        """Show the prompt; the decision arrives later as a runtime message."""


def _is_decision(message: Message) -> bool:
    return message.get("action") in (PERMISSION_GRANTED, PERMISSION_DENIED)


class PermissionGate:
    """Ask once per gated operation unless the user chose to always allow."""

    def __init__(
        self,
        store: KeyValueStore,
        channel: MessageChannel,
        prompt: PermissionPrompt,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.channel = channel
        self.prompt = prompt
        self._log = logger or LOGGER

    async def check(self) -> bool:
        """Return True if the handoff may proceed."""
        if await is_always_allowed(self.store):
            self._log.debug("Permission bypassed: always allow is set")
            return True

        # Listen before opening so a fast answer cannot be missed
        decision = self.channel.wait_for(_is_decision)
        try:
            await self.prompt.open()
        except Exception:
            decision.cancel()
            raise
        message = await decision

        if message["action"] == PERMISSION_DENIED:
            self._log.info("Permission denied")
            return False

        if message.get("alwaysAllow"):
            await set_always_allow(self.store)
            self._log.info("Permission granted; remembering choice")
        else:
            self._log.info("Permission granted")
        return True


class PresetPermissionPrompt:
    """Prompt answered ahead of time, e.g. by an MCP client's tool arguments."""

    def __init__(
        self, channel: MessageChannel, *, allow: bool, always_allow: bool = False
    ) -> None:
        self.channel = channel
        self.allow = allow
        self.always_allow = always_allow
        self.opened = 0

    async def open(self) -> None:
        self.opened += 1
        if self.allow:
            self.channel.publish(
                {"action": PERMISSION_GRANTED, "alwaysAllow": self.always_allow}
            )
        else:
            self.channel.publish({"action": PERMISSION_DENIED})


class ConsolePermissionPrompt:
    """Terminal prompt that answers with exactly one decision message."""

    def __init__(
        self,
        channel: MessageChannel,
        input_fn: Callable[[str], str] = input,
    ) -> None:
        self.channel = channel
        self._input = input_fn
        self._tasks: Set[asyncio.Task] = set()

    async def open(self) -> None:
        task = asyncio.create_task(self._ask())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _ask(self) -> None:
        always = False
        try:
            allowed = await asyncio.to_thread(self._confirm, f"{PROMPT_TEXT} [y/N] ")
            if allowed:
                always = await asyncio.to_thread(
                    self._confirm, "Always allow without asking? [y/N] "
                )
        except EOFError:
            allowed = False
        except Exception as exc:
            LOGGER.warning("Permission prompt failed: %s", exc)
            allowed = False

        if allowed:
            self.channel.publish({"action": PERMISSION_GRANTED, "alwaysAllow": always})
        else:
            self.channel.publish({"action": PERMISSION_DENIED})

    def _confirm(self, question: str) -> bool:
        return self._input(question).strip().lower() in ("y", "yes")

"""Events raised by the discovery transport and beacon.

Incoming envelopes surface as one of three variants:

- ``NamedEvent``   — envelope with both an event name and a payload,
  delivered to handlers registered under that name (e.g. ``"hello"``);
- ``MessageEvent`` — envelope without a payload, delivered to ``"message"``;
- ``ErrorEvent``   — decode, bind or join failure, delivered to ``"error"``.

``EventDispatcher`` maps a tag string to its handler list.  Handlers may be
plain callables or coroutine functions; coroutines run as background tasks
whose failures are logged.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from natatorium.discovery.protocol import Envelope, SenderInfo

ERROR = "error"
MESSAGE = "message"
HELLO = "hello"
HELLO_RECEIVED = "helloReceived"

Handler = Callable[[Any], Any]


@dataclass
class NamedEvent:
    name: str
    data: Any
    envelope: Envelope
    sender: SenderInfo


@dataclass
class MessageEvent:
    envelope: Envelope
    sender: SenderInfo

    name = MESSAGE


@dataclass
class ErrorEvent:
    error: BaseException

    name = ERROR


class EventDispatcher:
    """Tag-keyed handler registry."""

    def __init__(self, label: str) -> None:
        self._label = label
        self._handlers: defaultdict[str, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def on(self, name: str, handler: Handler) -> None:
        """Register *handler* for events tagged *name*."""
        self._handlers[name].append(handler)

    def off(self, name: str, handler: Handler) -> None:
        """Unregister *handler*; unknown handlers are ignored."""
        handlers = self._handlers.get(name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def has_handlers(self, name: str) -> bool:
        return bool(self._handlers.get(name))

    def dispatch(self, name: str, event: Any) -> int:
        """Call every handler for *name* with *event*; return how many ran."""
        handlers = list(self._handlers.get(name, ()))
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    self._spawn(result, name)
            except Exception as exc:
                logger.error("[{}] {!r} handler error: {}", self._label, name, exc)
        return len(handlers)

    def _spawn(self, coro: Any, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{self._label}-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._log_task_failure)
        return task

    def _log_task_failure(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[{}] async handler {!r} failed: {!r}", self._label, task.get_name(), exc)

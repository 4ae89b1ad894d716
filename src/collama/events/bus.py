"""Async pub/sub EventBus.

Presentation layers (status bar, notifications, chat panels) subscribe here
instead of being called directly by the client or the agent loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable

from collama.types import AgentEvent, EventType

_logger = logging.getLogger(__name__)

_WILDCARD = "*"

_NOTICE_TYPES = frozenset({EventType.USER_WARNING, EventType.USER_ERROR})

Handler = Callable[[AgentEvent], Any]


class EventBus:
    """Lightweight async pub/sub event bus.

    - Subscribe to a specific ``EventType`` or ``"*"`` for everything.
    - Handlers may be sync or async.
    - A failing handler is logged and never affects the emitter.
    - User-facing warnings and errors are also kept in a separate, smaller
      buffer so a long agent run cannot push them out of reach.
    """

    def __init__(self, max_history: int = 200, max_notices: int = 50) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: list[AgentEvent] = []
        self._max_history = max_history
        self._notices: deque[AgentEvent] = deque(maxlen=max_notices)

    def subscribe(self, event_type: EventType | str, handler: Handler) -> None:
        """Register *handler* for *event_type* (or ``"*"`` for all)."""
        self._handlers.setdefault(self._key(event_type), []).append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        handlers = self._handlers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: AgentEvent) -> None:
        """Fan *event* out to matching and wildcard handlers."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]
        if event.type in _NOTICE_TYPES:
            self._notices.append(event)

        handlers = list(self._handlers.get(self._key(event.type), []))
        handlers.extend(self._handlers.get(_WILDCARD, []))
        if not handlers:
            return

        await asyncio.gather(
            *(self._call_handler(h, event) for h in handlers),
            return_exceptions=True,
        )

    async def publish(self, event_type: EventType, **data: Any) -> None:
        """Shorthand for ``emit(AgentEvent(event_type, data))``."""
        await self.emit(AgentEvent(type=event_type, data=data))

    @property
    def history(self) -> list[AgentEvent]:
        return list(self._history)

    @property
    def notices(self) -> list[AgentEvent]:
        """Recent ``USER_WARNING`` and ``USER_ERROR`` events, oldest first."""
        return list(self._notices)

    def clear(self) -> None:
        self._handlers.clear()
        self._history.clear()
        self._notices.clear()

    @staticmethod
    def _key(event_type: EventType | str) -> str:
        if isinstance(event_type, EventType):
            return event_type.value
        return str(event_type)

    @staticmethod
    async def _call_handler(handler: Handler, event: AgentEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "EventBus handler %s raised for event %s",
                getattr(handler, "__name__", handler),
                event.type,
            )

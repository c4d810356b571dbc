"""
State-change notifications.

The vault emits ``{"cmd": ..., "data": ...}`` messages when scripts are added,
updated or removed so UI and runtime collaborators can refresh. Listeners are
plain callables or coroutine functions registered on an :class:`EventBus`.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal

logger = logging.getLogger(__name__)

Command = Literal["AddScript", "UpdateScript", "RemoveScript"]
Listener = Callable[["Event"], Awaitable[None] | None]


@dataclass(slots=True)
class Event:
    cmd: Command
    data: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"cmd": self.cmd, "data": self.data}


class EventBus:
    """Fan-out of :class:`Event` objects to registered listeners."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Listener:
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def emit(self, event: Event) -> None:
        """Deliver ``event`` to every listener in subscription order."""

        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener %r failed on %s", listener, event.cmd)


__all__ = ["Command", "Event", "EventBus", "Listener"]

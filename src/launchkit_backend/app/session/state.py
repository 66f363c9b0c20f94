# src/launchkit_backend/app/session/state.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Generic, List, TypeVar

T = TypeVar("T")

Listener = Callable[[T], None]
Unsubscribe = Callable[[], None]

logger = logging.getLogger(__name__)


def _same(a: object, b: object) -> bool:
    # None, False and model instances must never compare equal to each other
    return a is b or (type(a) is type(b) and a == b)


class StateCell(Generic[T]):
    """
    Single-writer observable value.

    The owner calls set(); everyone else reads .value or registers with
    subscribe(), which returns a handle that removes the listener again.
    Listeners run synchronously, in registration order, only when the value
    actually changes.
    """

    def __init__(self, initial: T):
        self._value: T = initial
        self._listeners: List[Listener] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if _same(value, self._value):
            return
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("state listener failed")

    def subscribe(self, listener: Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


async def wait_for(cell: StateCell[T], predicate: Callable[[T], bool]) -> T:
    """Resolve with the first value of `cell` (current or future) that satisfies `predicate`."""
    if predicate(cell.value):
        return cell.value

    loop = asyncio.get_running_loop()
    fut: asyncio.Future = loop.create_future()

    def _on_change(value: T) -> None:
        if predicate(value) and not fut.done():
            fut.set_result(value)

    unsubscribe = cell.subscribe(_on_change)
    try:
        return await fut
    finally:
        # Prevent from firing again
        unsubscribe()

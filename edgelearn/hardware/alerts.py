"""
EdgeLearn Core - Hardware Alerts

Single typed alert channel. Alerts are a tagged variant
(``ThermalAlert`` | ``MemoryPressureAlert``) published through one
``AlertChannel``; subscribers are scheduled on the event loop and the
publisher never waits for them.
"""

from typing import Callable, List, Union
from dataclasses import dataclass, field
from enum import Enum
import asyncio
import inspect
import time

from loguru import logger

from ..core.types import HardwareSnapshot


class AlertKind(Enum):
    THERMAL = "thermal"
    MEMORY_PRESSURE = "memory_pressure"


@dataclass(frozen=True)
class ThermalAlert:
    snapshot: HardwareSnapshot
    reasons: tuple = ()
    timestamp: float = field(default_factory=time.time)

    kind = AlertKind.THERMAL


@dataclass(frozen=True)
class MemoryPressureAlert:
    snapshot: HardwareSnapshot
    pressure: float = 0.0
    timestamp: float = field(default_factory=time.time)

    kind = AlertKind.MEMORY_PRESSURE


HardwareAlert = Union[ThermalAlert, MemoryPressureAlert]
AlertHandler = Callable[[HardwareAlert], object]


class AlertChannel:
    """
    Fire-and-forget alert fan-out.

    Coroutine handlers become tasks, plain handlers are queued with
    ``call_soon``. Outside a running loop handlers are invoked inline.
    """

    def __init__(self):
        self._handlers: List[AlertHandler] = []
        self._tasks: set = set()
        self.published = 0

    def subscribe(self, handler: AlertHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, alert: HardwareAlert) -> None:
        self.published += 1
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for handler in list(self._handlers):
            if loop is None:
                self._invoke_inline(handler, alert)
            elif inspect.iscoroutinefunction(handler):
                task = loop.create_task(self._run_async(handler, alert))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            else:
                loop.call_soon(self._invoke_sync, handler, alert)

    @staticmethod
    def _invoke_sync(handler: AlertHandler, alert: HardwareAlert) -> None:
        try:
            handler(alert)
        except Exception as exc:
            logger.error(f"Alert handler {getattr(handler, '__name__', handler)} failed: {exc}")

    @staticmethod
    async def _run_async(handler: AlertHandler, alert: HardwareAlert) -> None:
        try:
            await handler(alert)
        except Exception as exc:
            logger.error(f"Alert handler {getattr(handler, '__name__', handler)} failed: {exc}")

    @staticmethod
    def _invoke_inline(handler: AlertHandler, alert: HardwareAlert) -> None:
        try:
            result = handler(alert)
            if inspect.iscoroutine(result):
                asyncio.run(result)
        except Exception as exc:
            logger.error(f"Alert handler {getattr(handler, '__name__', handler)} failed: {exc}")


__all__ = [
    'AlertKind',
    'ThermalAlert',
    'MemoryPressureAlert',
    'HardwareAlert',
    'AlertHandler',
    'AlertChannel',
]

"""
EdgeLearn Core - Lifecycle Events

Notifications are fire-and-forget: ``publish`` records the event and
schedules subscribers on the running loop without waiting for them. Every
event carries a pseudonymized user id and a scrubbed payload.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
import asyncio
import inspect
import time

from loguru import logger

from .privacy.anonymize import DEFAULT_SALT, pseudonymize, scrub


class LearningEventType(Enum):
    TRAINING_STARTED = "training_started"
    TRAINING_COMPLETED = "training_completed"
    TRAINING_FAILED = "training_failed"
    MODEL_UPDATE_STARTED = "model_update_started"
    MODEL_UPDATE_COMPLETED = "model_update_completed"
    MODEL_UPDATE_FAILED = "model_update_failed"
    VALIDATION_STARTED = "validation_started"
    VALIDATION_COMPLETED = "validation_completed"
    VALIDATION_FAILED = "validation_failed"
    OPTIMIZATION_STARTED = "optimization_started"
    OPTIMIZATION_COMPLETED = "optimization_completed"
    OPTIMIZATION_FAILED = "optimization_failed"
    MODEL_RESET_STARTED = "model_reset_started"
    MODEL_RESET_COMPLETED = "model_reset_completed"
    MODEL_RESET_FAILED = "model_reset_failed"
    FEEDBACK_RECEIVED = "feedback_received"
    THERMAL_ALERT = "thermal_alert"
    MEMORY_PRESSURE_ALERT = "memory_pressure_alert"
    RECOVERY_COMPLETED = "recovery_completed"
    RECOVERY_FAILED = "recovery_failed"
    FALLBACK_MODE_ACTIVATED = "fallback_mode_activated"
    SYSTEM_STARTED = "system_started"
    SYSTEM_STOPPED = "system_stopped"


@dataclass(frozen=True)
class LearningEvent:
    type: LearningEventType
    user_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def create(
        cls,
        event_type: LearningEventType,
        user_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        salt: str = DEFAULT_SALT,
    ) -> "LearningEvent":
        return cls(
            type=event_type,
            user_id=pseudonymize(user_id, salt) if user_id is not None else None,
            payload=scrub(payload or {}, salt),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
        }


EventHandler = Callable[[LearningEvent], Any]


class EventBus(Protocol):
    def publish(self, event: LearningEvent) -> None: ...

    def subscribe(self, handler: EventHandler, types: Optional[Iterable[LearningEventType]] = None) -> Callable[[], None]: ...


class InMemoryEventBus:
    """Bounded in-process bus."""

    def __init__(self, history_size: int = 1000):
        self._history: deque = deque(maxlen=history_size)
        self._subscribers: List[tuple] = []
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, handler: EventHandler, types: Optional[Iterable[LearningEventType]] = None) -> Callable[[], None]:
        entry = (handler, frozenset(types) if types is not None else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: LearningEvent) -> None:
        self._history.append(event)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for handler, types in list(self._subscribers):
            if types is not None and event.type not in types:
                continue
            if loop is None:
                self._deliver(handler, event)
            elif inspect.iscoroutinefunction(handler):
                task = loop.create_task(self._deliver_async(handler, event))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            else:
                loop.call_soon(self._deliver, handler, event)

    @staticmethod
    def _deliver(handler: EventHandler, event: LearningEvent) -> None:
        try:
            handler(event)
        except Exception as exc:
            logger.error(f"Event handler failed for {event.type.value}: {exc}")

    @staticmethod
    async def _deliver_async(handler: EventHandler, event: LearningEvent) -> None:
        try:
            await handler(event)
        except Exception as exc:
            logger.error(f"Event handler failed for {event.type.value}: {exc}")

    def history(self, event_type: Optional[LearningEventType] = None) -> List[LearningEvent]:
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type is event_type]

    def types(self) -> List[LearningEventType]:
        return [e.type for e in self._history]


__all__ = [
    'LearningEventType',
    'LearningEvent',
    'EventHandler',
    'EventBus',
    'InMemoryEventBus',
]

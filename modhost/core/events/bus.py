from __future__ import annotations

import collections
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from modhost.core.events.models import BaseEvent


class EventBusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    keep_recent: int = Field(default=200, ge=10, le=10_000)


@dataclass
class _Sub:
    event_type: str
    handler: Callable[[BaseEvent], None]
    priority: int


class EventBus:
    """
    In-process synchronous event bus for lifecycle notifications.

    - publish delivers to matching subscribers in priority order on the caller's thread
    - handler failures are isolated (logged + counted) and never reach the publisher
    - subscription patterns: exact ("module.enabled"), prefix ("module.*"), all ("*")
    """

    def __init__(self, *, cfg: Optional[EventBusConfig] = None, logger: Optional[logging.Logger] = None):
        self.cfg = cfg or EventBusConfig()
        self.logger = logger or logging.getLogger("modhost.events")
        self._lock = threading.Lock()
        self._subs: List[_Sub] = []
        self._recent: Deque[Dict[str, Any]] = collections.deque(maxlen=int(self.cfg.keep_recent))
        self._published_total = 0
        self._delivered_total = 0
        self._handler_errors_total = 0
        self._per_type: Dict[str, int] = {}

    def enabled(self) -> bool:
        return bool(self.cfg.enabled)

    def subscribe(self, event_type: str, handler: Callable[[BaseEvent], None], priority: int = 50) -> None:
        if not callable(handler):
            raise ValueError("handler must be callable")
        with self._lock:
            self._subs.append(_Sub(event_type=str(event_type), handler=handler, priority=int(priority)))
            self._subs.sort(key=lambda s: s.priority)

    def unsubscribe(self, handler: Callable[[BaseEvent], None]) -> int:
        with self._lock:
            keep = [s for s in self._subs if s.handler is not handler]
            removed = len(self._subs) - len(keep)
            self._subs = keep
        return removed

    @staticmethod
    def _matches(pattern: str, event_type: str) -> bool:
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            return event_type.startswith(pattern[:-1])
        return pattern == event_type

    def publish(self, ev: BaseEvent) -> bool:
        if not self.enabled():
            return False
        with self._lock:
            self._published_total += 1
            self._per_type[ev.event_type] = self._per_type.get(ev.event_type, 0) + 1
            self._recent.appendleft(ev.model_dump())
            targets = [s for s in self._subs if self._matches(s.event_type, ev.event_type)]
        for sub in targets:
            try:
                sub.handler(ev)
                with self._lock:
                    self._delivered_total += 1
            except Exception as e:  # noqa: BLE001
                with self._lock:
                    self._handler_errors_total += 1
                self.logger.warning("event handler failed for %s: %s", ev.event_type, e)
        return True

    def publish_nowait(self, ev: BaseEvent) -> bool:
        return self.publish(ev)

    def dump_recent(self, n: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._recent)[: max(1, int(n))]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "enabled": self.enabled(),
                "published_total": self._published_total,
                "delivered_total": self._delivered_total,
                "handler_errors_total": self._handler_errors_total,
                "subscribers": len(self._subs),
                "per_type_published": dict(self._per_type),
            }

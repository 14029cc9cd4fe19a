import heapq
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Protocol

import pygame


@dataclass(order=True)
class TimerHandle:
    due_ms: int
    order: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)


class Scheduler(Protocol):
    """One-shot timers. Callbacks run on the caller's thread, one at a time."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...

    def cancel(self, handle: TimerHandle) -> None: ...


class _HeapScheduler(ABC):
    """Timer heap shared by the schedulers; subclasses supply the clock."""

    def __init__(self):
        self._heap: list[TimerHandle] = []
        self._counter = itertools.count()

    @abstractmethod
    def now_ms(self) -> int:
        pass

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be non-negative, got {delay_ms}")
        handle = TimerHandle(self.now_ms() + int(delay_ms), next(self._counter), callback)
        heapq.heappush(self._heap, handle)
        return handle

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancelled = True

    @property
    def pending(self) -> int:
        return sum(1 for h in self._heap if not h.cancelled)

    def _fire_due(self, now_ms: int) -> int:
        """Run every callback due at or before now_ms, in due order."""
        fired = 0
        while self._heap and self._heap[0].due_ms <= now_ms:
            handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            handle.callback()
            fired += 1
        return fired


class ManualScheduler(_HeapScheduler):
    """
    Virtual clock for tests and headless runs.
    Time only moves when advance() is called.
    """

    def __init__(self, start_ms: int = 0):
        super().__init__()
        self._now_ms = start_ms

    def now_ms(self) -> int:
        return self._now_ms

    def advance(self, ms: int) -> int:
        """
        Move the clock forward by `ms`, firing timers as their due time is
        reached, including timers armed by earlier callbacks.
        Returns the number of callbacks run.
        """
        target = self._now_ms + ms
        fired = 0
        while True:
            live = [h for h in self._heap if not h.cancelled]
            if not live:
                break
            next_due = min(h.due_ms for h in live)
            if next_due > target:
                break
            self._now_ms = max(self._now_ms, next_due)
            fired += self._fire_due(self._now_ms)
        self._now_ms = target
        return fired

    def run_until_idle(self, limit: int = 100_000) -> int:
        """Jump from timer to timer until none are left."""
        fired = 0
        while self.pending:
            if fired >= limit:
                raise RuntimeError(f"Scheduler still busy after {limit} callbacks")
            next_due = min(h.due_ms for h in self._heap if not h.cancelled)
            fired += self.advance(next_due - self._now_ms)
        return fired


class PygameScheduler(_HeapScheduler):
    """Timers on pygame's millisecond ticks, fired by poll() from the main loop."""

    def now_ms(self) -> int:
        return pygame.time.get_ticks()

    def poll(self) -> int:
        return self._fire_due(self.now_ms())

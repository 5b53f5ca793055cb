"""Bounded FIFO concurrency gate for outbound API requests."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Callable, Deque, TypeVar

from .errors import ConfigError

T = TypeVar("T")


class RequestGate:
    """Admit at most ``max_concurrent`` callers, in arrival order."""

    def __init__(self, max_concurrent: int = 10) -> None:
        if max_concurrent < 1:
            raise ConfigError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self._cond = threading.Condition()
        self._waiting: Deque[object] = deque()
        self._running = 0

    @property
    def running(self) -> int:
        with self._cond:
            return self._running

    def acquire(self) -> None:
        ticket = object()
        with self._cond:
            self._waiting.append(ticket)
            while self._waiting[0] is not ticket or self._running >= self.max_concurrent:
                self._cond.wait()
            self._waiting.popleft()
            self._running += 1
            # the next waiter may also fit
            self._cond.notify_all()

    def release(self) -> None:
        with self._cond:
            if self._running <= 0:
                raise RuntimeError("release() called more times than acquire()")
            self._running -= 1
            self._cond.notify_all()

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self:
            return func(*args, **kwargs)

    def __enter__(self) -> "RequestGate":
        self.acquire()
        return self

    def __exit__(self, *_: Any) -> None:
        self.release()


__all__ = ["RequestGate"]

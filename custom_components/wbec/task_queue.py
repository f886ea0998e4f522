"""Single-flight, rate-limited request queue for the wbec controller.

The wbec runs on an ESP8266 and falls over when it receives requests faster
than it can answer them. Every outbound request therefore goes through one
``RateLimitedTaskQueue``: at most one request is in flight, consecutive
requests are spaced by at least ``min_interval`` seconds, and a request that
is still waiting in the backlog can be superseded by a newer one sharing the
same coalescing key. Every caller of a superseded request is still answered,
with the outcome of the request that actually ran.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

_LOGGER = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


class QueueResetError(Exception):
    """Raised to callers whose queued request was dropped by ``reset()``."""

    def __init__(self, message: str = "Request queue was reset") -> None:
        super().__init__(message)


class QueueState(str, Enum):
    """Observable state of the queue."""

    IDLE = "idle"
    WAITING = "waiting"
    DISPATCHING = "dispatching"


@dataclass
class _PendingTask:
    execute: TaskFactory
    waiters: list[asyncio.Future] = field(default_factory=list)
    key: str | None = None


class RateLimitedTaskQueue:
    """Serialize coroutine factories with a minimum spacing between them."""

    def __init__(self, min_interval: float) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must not be negative")
        self._min_interval = float(min_interval)
        self._backlog: list[_PendingTask] = []
        self._dispatching = False
        # Loop clock of the last settled dispatch; None means never.
        self._last_dispatch: float | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._scheduled: _PendingTask | None = None
        self._active: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._backlog)

    @property
    def min_interval(self) -> float:
        return self._min_interval

    @property
    def pending_keys(self) -> list[str]:
        return [entry.key for entry in self._backlog if entry.key]

    @property
    def state(self) -> QueueState:
        if self._timer is not None:
            return QueueState.WAITING
        if self._dispatching:
            return QueueState.DISPATCHING
        return QueueState.IDLE

    def enqueue(self, task: TaskFactory, key: str | None = None) -> asyncio.Future:
        """Queue ``task`` and return a future settled with its outcome.

        When a backlog entry already holds ``key`` its task is replaced by
        ``task`` and the new caller joins that entry's waiters; the entry keeps
        its position. Must be called from inside the running event loop.
        """
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future = loop.create_future()

        entry = self._find(key) if key else None
        if entry is not None:
            _LOGGER.debug(
                "Coalescing queued request key=%s (waiters=%s)",
                key,
                len(entry.waiters) + 1,
            )
            entry.execute = task
            entry.waiters.append(waiter)
        else:
            self._backlog.append(_PendingTask(execute=task, waiters=[waiter], key=key))

        self._advance()
        return waiter

    def reset(self) -> None:
        """Fail every request that has not started yet and clear timing state.

        A request that is already running is left alone and still answers its
        callers when it completes.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        dropped: list[_PendingTask] = []
        if self._scheduled is not None:
            dropped.append(self._scheduled)
            self._scheduled = None
        dropped.extend(self._backlog)
        self._backlog = []

        if dropped:
            _LOGGER.debug("Resetting request queue, dropping %s entries", len(dropped))
        for entry in dropped:
            self._settle(entry.waiters, exception=QueueResetError())

        self._last_dispatch = None
        self._dispatching = False

    def _find(self, key: str) -> _PendingTask | None:
        for entry in self._backlog:
            if entry.key == key:
                return entry
        return None

    def _advance(self) -> None:
        if self._dispatching or not self._backlog:
            return

        self._dispatching = True
        entry = self._backlog.pop(0)
        entry.key = None

        loop = asyncio.get_running_loop()
        delay = 0.0
        if self._last_dispatch is not None:
            elapsed = loop.time() - self._last_dispatch
            delay = self._min_interval - elapsed

        if delay > 0:
            _LOGGER.debug("Delaying next request by %.3fs", delay)
            self._scheduled = entry
            self._timer = loop.call_later(delay, self._on_timer, entry)
            return

        self._dispatch(entry)

    def _on_timer(self, entry: _PendingTask) -> None:
        self._timer = None
        self._scheduled = None
        self._dispatch(entry)

    def _dispatch(self, entry: _PendingTask) -> None:
        self._active = asyncio.get_running_loop().create_task(self._run(entry))

    async def _run(self, entry: _PendingTask) -> None:
        try:
            result = await entry.execute()
        except asyncio.CancelledError:
            self._finish(entry, cancelled=True)
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                # The dispatch task itself is being torn down; let the
                # cancellation through and pick up the backlog afterwards.
                asyncio.get_running_loop().call_soon(self._advance)
                raise
        except Exception as err:  # noqa: BLE001 - relayed to every waiter
            self._finish(entry, exception=err)
        else:
            self._finish(entry, result=result)
        self._advance()

    def _finish(
        self,
        entry: _PendingTask,
        *,
        result: Any = None,
        exception: BaseException | None = None,
        cancelled: bool = False,
    ) -> None:
        self._last_dispatch = asyncio.get_running_loop().time()
        if cancelled:
            for waiter in entry.waiters:
                if not waiter.done():
                    waiter.cancel()
        else:
            self._settle(entry.waiters, result=result, exception=exception)
        self._dispatching = False
        # After a reset a newer dispatch may already own the slot.
        if self._active is asyncio.current_task():
            self._active = None

    @staticmethod
    def _settle(
        waiters: list[asyncio.Future],
        *,
        result: Any = None,
        exception: BaseException | None = None,
    ) -> None:
        for waiter in waiters:
            # Callers that stopped awaiting have already cancelled their future.
            if waiter.done():
                continue
            if exception is not None:
                waiter.set_exception(exception)
            else:
                waiter.set_result(result)

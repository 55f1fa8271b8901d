"""Execution poller.

The poll loop is split in two: :class:`ExecutionPoller` holds the state
machine (which status was seen, how long to wait, when to stop) and the
``poll_execution`` / ``async_poll_execution`` drivers own the clock and the
network. A :class:`CancelToken` is checked before every sleep and every status
request.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable

from ...config import DEFAULT_POLL_INTERVAL
from ...core.errors import OperationCancelled, QueryStatusError
from ...core.models import ExecutionStatus, StatusResponse
from ...core.ports import AsyncExecutionApi, ExecutionApi

logger = logging.getLogger(__name__)


class CancelToken:
    """Caller-owned flag that aborts a wait at its next suspension point.

    ``cancel()`` may be called from any thread; it wakes blocked
    :meth:`wait` calls and any :meth:`async_wait` suspended on an event loop.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            waiters = list(self._waiters)
        for loop, waiter in waiters:
            loop.call_soon_threadsafe(waiter.set)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation cancelled by caller")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns early (True) once cancelled."""
        return self._event.wait(seconds)

    async def async_wait(self, seconds: float) -> bool:
        """Suspend up to ``seconds``; returns early (True) once cancelled."""
        waiter = (asyncio.get_running_loop(), asyncio.Event())
        with self._lock:
            if self._event.is_set():
                return True
            self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter[1].wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        finally:
            with self._lock:
                self._waiters.remove(waiter)
        return self.cancelled


class ExecutionPoller:
    """State machine over :class:`ExecutionStatus` for one execution."""

    def __init__(self, execution_id: str, *, poll_interval: float = DEFAULT_POLL_INTERVAL):
        if poll_interval < 0:
            raise ValueError("poll_interval must be >= 0")
        self.execution_id = execution_id
        self.poll_interval = poll_interval
        self.state: ExecutionStatus | None = None
        self.last_status: StatusResponse | None = None
        self.ticks = 0

    @property
    def done(self) -> bool:
        return self.state is not None and self.state.is_terminal

    def observe(self, status: StatusResponse) -> float | None:
        """Record one status tick.

        Returns the delay before the next tick while the execution is pending
        or executing, ``None`` once it completed, and raises
        :class:`QueryStatusError` for failed, cancelled or expired executions.
        """
        self.ticks += 1
        self.state = status.state
        self.last_status = status
        if not status.state.is_terminal:
            logger.info(
                "execution %s is %s, next check in %ss",
                self.execution_id,
                status.state.value,
                self.poll_interval,
            )
            return self.poll_interval
        if status.state.is_failure:
            raise QueryStatusError(status.state, execution_id=self.execution_id, detail=status.error)
        logger.info("execution %s finished with %s", self.execution_id, status.state.value)
        return None


def poll_execution(
    client: ExecutionApi,
    execution_id: str,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    cancel_token: CancelToken | None = None,
    sleep: Callable[[float], object] | None = None,
) -> StatusResponse:
    """Block until ``execution_id`` reaches a terminal state."""
    poller = ExecutionPoller(execution_id, poll_interval=poll_interval)
    token = cancel_token or CancelToken()
    wait = sleep or token.wait
    t_start = time.monotonic()
    while True:
        token.raise_if_cancelled()
        delay = poller.observe(client.get_execution_status(execution_id))
        if delay is None:
            break
        token.raise_if_cancelled()
        logger.debug("waiting for %s, t = %.02f", execution_id, time.monotonic() - t_start)
        wait(delay)
    assert poller.last_status is not None
    return poller.last_status


async def async_poll_execution(
    client: AsyncExecutionApi,
    execution_id: str,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    cancel_token: CancelToken | None = None,
) -> StatusResponse:
    """Like :func:`poll_execution`, suspending on the event loop between ticks."""
    poller = ExecutionPoller(execution_id, poll_interval=poll_interval)
    token = cancel_token or CancelToken()
    t_start = time.monotonic()
    while True:
        token.raise_if_cancelled()
        delay = poller.observe(await client.get_execution_status(execution_id))
        if delay is None:
            break
        token.raise_if_cancelled()
        logger.debug("waiting for %s, t = %.02f", execution_id, time.monotonic() - t_start)
        await token.async_wait(delay)
    assert poller.last_status is not None
    return poller.last_status

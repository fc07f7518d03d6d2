"""Poller/scheduler — named repeating refresh tasks with staleness guards.

Each view owns one ``PollTask``.  A task fetches immediately on start and
then once per period.  Every cycle captures the task's generation when it
starts and commits its result only if that generation is still current, so
a slow response issued before a cancel or a dependency change can never
overwrite newer state.  Cancellation is soft: in-flight requests are left to
finish and their results are dropped.

All state transitions run on the event loop thread; no locks are needed.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from stratwatch.sources.errors import SourceError

logger = logging.getLogger("stratwatch.scheduler")

Fetch = Callable[[], Awaitable[Any]]


@dataclass
class ViewState:
    """Last committed state of one view.

    ``data`` is replaced wholesale on every successful commit; a failed
    cycle keeps the previous data and records ``error``.
    """

    data: Any = None
    error: Optional[str] = None
    loading: bool = True
    last_update: Optional[datetime] = None
    generation: int = 0

    def commit(self, data: Any, generation: int) -> None:
        self.data = data
        self.error = None
        self.loading = False
        self.last_update = datetime.now(timezone.utc)
        self.generation = generation

    def fail(self, message: str) -> None:
        self.error = message
        self.loading = False

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "error": self.error,
            "loading": self.loading,
            "last_update": self.last_update,
        }


class PollTask:
    """One repeating fetch-and-commit task.

    Args:
        name:      View identity, used in logs.
        fetch:     Coroutine factory producing the view's complete result.
        period:    Seconds between triggers.
        on_commit: Optional callback run after each successful commit.
        skip_if_busy: When ``True`` a periodic trigger is skipped while a
                      cycle of the current generation is still in flight.
    """

    def __init__(
        self,
        name: str,
        fetch: Fetch,
        period: float,
        on_commit: Optional[Callable[[ViewState], None]] = None,
        skip_if_busy: bool = True,
    ) -> None:
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.name = name
        self.period = period
        self.state = ViewState()
        self._fetch = fetch
        self._on_commit = on_commit
        self._skip_if_busy = skip_if_busy
        self._generation = 0
        self._cancelled = False
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: dict[asyncio.Task, int] = {}

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def generation(self) -> int:
        """Current generation token."""
        return self._generation

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._cancelled

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def in_flight(self) -> int:
        """Number of cycles still awaiting their fetch (stale ones included)."""
        return len(self._inflight)

    def _busy(self, generation: int) -> bool:
        return any(g == generation for g in self._inflight.values())

    def _is_current(self, generation: int) -> bool:
        return not self._cancelled and generation == self._generation

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> Optional[asyncio.Task]:
        """Trigger an immediate cycle and begin periodic re-triggering.

        Must be called from inside a running event loop.  Returns the task
        of the first cycle.
        """
        if self._cancelled:
            raise RuntimeError(f"Poll task '{self.name}' was cancelled")
        if self._loop_task is not None:
            return None
        first = self.trigger()
        self._loop_task = asyncio.create_task(self._run(), name=f"poll:{self.name}")
        logger.debug("Started poll task '%s' (every %.1fs).", self.name, self.period)
        return first

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self.period)
            self.trigger()

    def trigger(self) -> Optional[asyncio.Task]:
        """Start one cycle now, unless cancelled or busy."""
        if self._cancelled:
            return None
        generation = self._generation
        if self._skip_if_busy and self._busy(generation):
            logger.debug(
                "Poll task '%s': previous cycle still in flight, skipping.", self.name,
            )
            return None
        task = asyncio.create_task(self._cycle(generation))
        self._inflight[task] = generation
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._inflight.pop(task, None)

    def invalidate(self) -> Optional[asyncio.Task]:
        """Mark in-flight cycles stale and refetch immediately.

        Used when a dependency of the view changes (e.g. the selected
        platform).
        """
        self._generation += 1
        logger.debug("Poll task '%s' invalidated (generation %d).", self.name, self._generation)
        return self.trigger()

    def cancel(self) -> None:
        """Stop scheduling and discard any in-flight results."""
        if self._cancelled:
            return
        self._cancelled = True
        self._generation += 1
        if self._loop_task is not None:
            self._loop_task.cancel()
        logger.debug("Cancelled poll task '%s'.", self.name)

    async def aclose(self) -> None:
        """Cancel and abort in-flight cycles (process shutdown only)."""
        self.cancel()
        pending = [t for t in (self._loop_task, *self._inflight) if t is not None]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # ── Cycle ────────────────────────────────────────────────────────────

    async def _cycle(self, generation: int) -> None:
        try:
            result = await self._fetch()
        except SourceError as exc:
            if self._is_current(generation):
                logger.warning("View '%s' refresh failed: %s", self.name, exc)
                self.state.fail(str(exc))
            return
        except Exception as exc:
            if self._is_current(generation):
                logger.exception("View '%s' refresh crashed.", self.name)
                self.state.fail(f"{type(exc).__name__}: {exc}")
            return

        if not self._is_current(generation):
            logger.debug(
                "View '%s': discarding stale result (generation %d, current %d).",
                self.name, generation, self._generation,
            )
            return

        self.state.commit(result, generation)
        if self._on_commit is not None:
            self._on_commit(self.state)


class Ticker:
    """Fast display tick, independent of any data poll.

    Calls *callback* every *period* seconds until cancelled.
    """

    def __init__(self, name: str, period: float, callback: Callable[[], None]) -> None:
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.name = name
        self.period = period
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"tick:{self.name}")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            try:
                self._callback()
            except Exception:
                logger.exception("Ticker '%s' callback failed.", self.name)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def aclose(self) -> None:
        self.cancel()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)


class Scheduler:
    """Registry of active poll tasks and tickers keyed by view identity."""

    def __init__(self) -> None:
        self._tasks: dict[str, PollTask] = {}
        self._tickers: dict[str, Ticker] = {}

    @property
    def keys(self) -> list[str]:
        return list(self._tasks.keys())

    def get(self, key: str) -> Optional[PollTask]:
        return self._tasks.get(key)

    def schedule(
        self,
        key: str,
        fetch: Fetch,
        period: float,
        on_commit: Optional[Callable[[ViewState], None]] = None,
    ) -> PollTask:
        """Register and start a poll task, replacing any task under *key*."""
        self.cancel(key)
        task = PollTask(key, fetch, period, on_commit=on_commit)
        self._tasks[key] = task
        task.start()
        logger.info("Scheduled view '%s' every %.1fs.", key, period)
        return task

    def tick(self, key: str, period: float, callback: Callable[[], None]) -> Ticker:
        """Register and start a display ticker, replacing any under *key*."""
        old = self._tickers.pop(key, None)
        if old is not None:
            old.cancel()
        ticker = Ticker(key, period, callback)
        self._tickers[key] = ticker
        ticker.start()
        return ticker

    def cancel(self, key: str) -> None:
        """Cancel the poll task and ticker registered under *key*, if any."""
        task = self._tasks.pop(key, None)
        if task is not None:
            task.cancel()
        ticker = self._tickers.pop(key, None)
        if ticker is not None:
            ticker.cancel()

    def cancel_all(self) -> None:
        for key in list(self._tasks) + list(self._tickers):
            self.cancel(key)

    async def shutdown(self) -> None:
        """Cancel everything and wait for the background tasks to unwind."""
        tasks = list(self._tasks.values())
        tickers = list(self._tickers.values())
        self._tasks.clear()
        self._tickers.clear()
        await asyncio.gather(
            *(t.aclose() for t in tasks),
            *(t.aclose() for t in tickers),
        )
        logger.info("Scheduler stopped (%d task(s)).", len(tasks))

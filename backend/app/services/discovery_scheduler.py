"""Discovery scheduler: one recurring refresh task per active indicator.

Every ``discovery_interval`` seconds the scheduler loads the conditions used
by active strategies, deduplicates them by fingerprint, and diffs the result
against the running tasks:
- fingerprints without a task get a new recurring refresh task
- tasks whose fingerprint disappeared are cancelled
- everything else is left untouched

Per-fingerprint lifecycle: UNSCHEDULED -> SCHEDULED -> REMOVED. A removed
fingerprint that shows up again is scheduled with a fresh task.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from core.models.indicator import IndicatorRequest, refresh_interval_for
from core.models.strategy import Condition

logger = logging.getLogger(__name__)

ConditionSource = Callable[[], Awaitable[list[Condition]]]
RefreshCallback = Callable[[IndicatorRequest], Awaitable[object]]


class TaskState(str, Enum):
    """Scheduling state of one indicator fingerprint."""

    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    REMOVED = "removed"


@dataclass
class DiscoveryResult:
    """Outcome of one discovery tick."""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    active: int = 0


def unique_requests(conditions: list[Condition]) -> dict[str, IndicatorRequest]:
    """Deduplicate conditions into fetchable requests keyed by fingerprint.

    Conditions without symbol/interval, or with an interval that has no
    refresh cadence, are skipped.
    """
    requests: dict[str, IndicatorRequest] = {}
    for condition in conditions:
        if not condition.is_schedulable:
            logger.warning(
                f"Condition {condition.id} is missing symbol or interval, "
                f"skipping for scheduling"
            )
            continue
        if refresh_interval_for(condition.interval) is None:
            logger.warning(
                f"Condition {condition.id} has unsupported interval "
                f"'{condition.interval}', skipping for scheduling"
            )
            continue

        request = IndicatorRequest.from_condition(condition)
        requests.setdefault(request.fingerprint, request)
    return requests


class DiscoveryScheduler:
    """Keeps the set of recurring refresh tasks in line with active strategies."""

    def __init__(
        self,
        source: ConditionSource,
        refresh: RefreshCallback,
        discovery_interval: float = 60.0,
    ):
        """
        Args:
            source: Loads the conditions used by active strategies.
            refresh: Called on every tick of an indicator's task.
            discovery_interval: Seconds between discovery ticks.
        """
        self._source = source
        self._refresh = refresh
        self.discovery_interval = discovery_interval

        # fingerprint -> recurring task; guarded by _lock
        self._tasks: dict[str, asyncio.Task] = {}
        self._requests: dict[str, IndicatorRequest] = {}
        self._removed: set[str] = set()
        self._lock = asyncio.Lock()
        # Pending _forget callbacks, held until they finish
        self._forgetting: set[asyncio.Task] = set()

        self._discovery_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._discovery_task is not None and not self._discovery_task.done()

    @property
    def scheduled(self) -> dict[str, IndicatorRequest]:
        """Requests that currently have a task, keyed by fingerprint."""
        return {fp: self._requests[fp] for fp in self._tasks}

    def state(self, fingerprint: str) -> TaskState:
        if fingerprint in self._tasks:
            return TaskState.SCHEDULED
        if fingerprint in self._removed:
            return TaskState.REMOVED
        return TaskState.UNSCHEDULED

    async def start(self) -> None:
        """Start the periodic discovery loop (first tick runs immediately)."""
        if self.is_running:
            return
        self._discovery_task = asyncio.create_task(self._discovery_loop())
        logger.info(f"Scheduler started. Indicator discovery runs every {self.discovery_interval}s")

    async def stop(self) -> None:
        """Stop discovery and cancel every recurring task."""
        logger.info("Stopping scheduler...")
        if self._discovery_task is not None:
            self._discovery_task.cancel()
            try:
                await self._discovery_task
            except asyncio.CancelledError:
                pass
            self._discovery_task = None

        async with self._lock:
            tasks = list(self._tasks.values())
            self._removed.update(self._tasks)
            self._tasks.clear()
            self._requests.clear()

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped.")

    async def _discovery_loop(self) -> None:
        while True:
            try:
                await self.run_discovery()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error during indicator discovery: {e}")
            await asyncio.sleep(self.discovery_interval)

    async def run_discovery(self) -> DiscoveryResult:
        """Run one discovery tick and reconcile the task map."""
        logger.debug("Running indicator discovery task...")
        conditions = await self._source()
        wanted = unique_requests(conditions)
        logger.info(f"Found {len(wanted)} unique active indicators to schedule.")

        result = DiscoveryResult()
        stale: list[asyncio.Task] = []

        async with self._lock:
            for fp, request in wanted.items():
                if fp in self._tasks:
                    continue
                self._start_task(fp, request)
                result.added.append(fp)

            for fp in list(self._tasks):
                if fp in wanted:
                    continue
                stale.append(self._tasks.pop(fp))
                self._requests.pop(fp, None)
                self._removed.add(fp)
                result.removed.append(fp)
                logger.info(f"Removed job for {fp}")

            result.active = len(self._tasks)

        for task in stale:
            task.cancel()

        return result

    def _start_task(self, fingerprint: str, request: IndicatorRequest) -> None:
        """Create the recurring task. Caller holds ``_lock``."""
        period = refresh_interval_for(request.interval)
        task = asyncio.create_task(
            self._refresh_loop(request, period), name=f"refresh:{fingerprint}"
        )
        task.add_done_callback(lambda t, fp=fingerprint: self._on_task_done(fp, t))
        self._tasks[fingerprint] = task
        self._requests[fingerprint] = request
        self._removed.discard(fingerprint)
        logger.info(f"Scheduled job for {fingerprint} every {period}s")

    async def _refresh_loop(self, request: IndicatorRequest, period: float) -> None:
        while True:
            try:
                await self._refresh(request)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Refresh failed for {request.fingerprint}: {e}")
            await asyncio.sleep(period)

    def _on_task_done(self, fingerprint: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Refresh task for {fingerprint} died: {exc}")
        # Forget the dead task so the next discovery tick reschedules it
        forget = asyncio.get_running_loop().create_task(self._forget(fingerprint, task))
        self._forgetting.add(forget)
        forget.add_done_callback(self._forgetting.discard)

    async def _forget(self, fingerprint: str, task: asyncio.Task) -> None:
        async with self._lock:
            if self._tasks.get(fingerprint) is task:
                del self._tasks[fingerprint]
                self._requests.pop(fingerprint, None)

"""JobQueue: in-process durable-execution substrate with named jobs, retries and ticks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from megabot.errors import DispatchError

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """Passed to every handler invocation."""

    name: str
    attempt: int
    max_attempts: int

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


JobHandler = Callable[[dict[str, Any], JobContext], Awaitable[Any]]


@dataclass
class _JobSpec:
    name: str
    handler: JobHandler
    retries: int


class JobQueue:
    """Runs named handlers in supervised tasks with bounded retries.

    ``send`` returns immediately; the handler runs up to ``retries + 1``
    times with exponential backoff between attempts. ``every`` runs a
    coroutine function on a fixed interval until shutdown.
    """

    def __init__(self, retry_min_seconds: float = 1.0, retry_max_seconds: float = 30.0) -> None:
        self.retry_min_seconds = retry_min_seconds
        self.retry_max_seconds = retry_max_seconds
        self._specs: dict[str, _JobSpec] = {}
        self._jobs: set[asyncio.Task] = set()
        self._tickers: set[asyncio.Task] = set()

    def register(self, name: str, handler: JobHandler, retries: int = 1) -> None:
        self._specs[name] = _JobSpec(name=name, handler=handler, retries=max(0, retries))

    def send(self, name: str, data: dict[str, Any]) -> asyncio.Task:
        spec = self._specs.get(name)
        if spec is None:
            raise DispatchError(f'No handler registered for job "{name}"')
        task = asyncio.create_task(self._run(spec, data), name=f"job:{name}")
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)
        logger.debug("Job %s queued", name)
        return task

    def _retrying(self, spec: _JobSpec) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(spec.retries + 1),
            wait=wait_exponential(multiplier=self.retry_min_seconds, max=self.retry_max_seconds),
            before_sleep=self._log_retry,
        )

    @staticmethod
    def _log_retry(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning("Job attempt %d failed, retrying: %s", state.attempt_number, error)

    async def _run(self, spec: _JobSpec, data: dict[str, Any]) -> None:
        max_attempts = spec.retries + 1
        try:
            async for attempt in self._retrying(spec):
                with attempt:
                    context = JobContext(
                        name=spec.name,
                        attempt=attempt.retry_state.attempt_number,
                        max_attempts=max_attempts,
                    )
                    await spec.handler(data, context)
        except Exception:
            logger.exception("Job %s failed after %d attempt(s)", spec.name, max_attempts)

    def every(
        self, interval: float, fn: Callable[[], Awaitable[Any]], name: str = "tick"
    ) -> asyncio.Task:
        """Call ``fn`` every ``interval`` seconds. Failures are logged, not fatal."""

        async def loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await fn()
                except Exception:
                    logger.exception("Periodic job %s failed", name)

        task = asyncio.create_task(loop(), name=f"tick:{name}")
        self._tickers.add(task)
        task.add_done_callback(self._tickers.discard)
        return task

    @property
    def pending_count(self) -> int:
        return sum(1 for t in self._jobs if not t.done())

    async def drain(self) -> None:
        """Wait until no jobs are running, including jobs queued by other jobs."""
        while self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        for ticker in list(self._tickers):
            ticker.cancel()
        await asyncio.gather(*list(self._tickers), return_exceptions=True)

        pending = [t for t in self._jobs if not t.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

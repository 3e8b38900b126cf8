from typing import Any, Awaitable, Callable, Dict, Optional, Set
import asyncio
import structlog

logger = structlog.get_logger(__name__)


class BackgroundTaskRunner:
    """Runs detached coroutines with bounded concurrency.

    Failures are logged and counted, never re-raised to the submitter.
    ``join`` waits until every submitted task has finished.
    """

    def __init__(self, max_concurrency: int = 8, on_failure: Optional[Callable[[str, BaseException], None]] = None):
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._on_failure = on_failure
        self.completed = 0
        self.failed = 0

    def submit(self, name: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """Schedule ``factory()`` to run detached from the caller"""

        task = asyncio.create_task(self._run(name, factory), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, factory: Callable[[], Awaitable[Any]]) -> None:
        async with self._semaphore:
            try:
                await factory()
                self.completed += 1
                logger.debug("Background task finished", task=name)
            except asyncio.CancelledError:
                logger.info("Background task cancelled", task=name)
                raise
            except Exception as e:
                self.failed += 1
                logger.error("Background task failed", task=name, error=str(e), exc_info=True)
                if self._on_failure is not None:
                    self._on_failure(name, e)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for all tracked tasks; returns False if the timeout expired first"""

        if not self._tasks:
            return True
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Drain outstanding work, cancelling whatever is still running after ``timeout``"""

        if await self.join(timeout):
            return
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    def get_stats(self) -> Dict[str, int]:
        return {"pending": self.pending, "completed": self.completed, "failed": self.failed}

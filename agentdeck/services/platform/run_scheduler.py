import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _PendingTask:
    seq: int
    key: str
    factory: Callable[[], Awaitable[Any]]
    future: "asyncio.Future[Any]" = field(repr=False)


class RunScheduler:
    """
    Bounded-concurrency scheduler with per-key FIFO ordering.

    Behavior:
    - At most `max_concurrent` tasks run at once across all keys.
    - Tasks sharing a key run strictly one after another in submission order.
    - A free slot goes to the earliest-submitted task whose key is idle, so
      with a bound of 1 execution follows global submission order.
    - A failed task frees its slot and key like a successful one.
    """

    def __init__(self, max_concurrent: int = 1) -> None:
        self._max_concurrent = max(1, int(max_concurrent))
        self._pending: List[_PendingTask] = []
        self._active_keys: Set[str] = set()
        self._running = 0
        self._seq = itertools.count()
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def set_max_concurrency(self, max_concurrent: int) -> None:
        """Change the global bound. Running tasks are never interrupted."""
        self._max_concurrent = max(1, int(max_concurrent))
        logger.info("Run scheduler bound set to %s", self._max_concurrent)
        self._admit()

    async def enqueue(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        entry = _PendingTask(seq=next(self._seq), key=key, factory=factory, future=loop.create_future())
        self._pending.append(entry)
        self._admit()
        return await entry.future

    def state(self) -> Dict[str, int]:
        return {
            "running": self._running,
            "queued": len(self._pending),
            "max_concurrent": self._max_concurrent,
        }

    def _next_eligible(self) -> _PendingTask | None:
        for entry in self._pending:
            if entry.key not in self._active_keys:
                return entry
        return None

    def _admit(self) -> None:
        while self._running < self._max_concurrent:
            entry = self._next_eligible()
            if entry is None:
                return
            self._pending.remove(entry)
            if entry.future.cancelled():
                continue
            self._active_keys.add(entry.key)
            self._running += 1
            task = asyncio.ensure_future(self._run(entry))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, entry: _PendingTask) -> None:
        try:
            result = await entry.factory()
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as exc:
            logger.debug("Scheduled task failed: key=%s seq=%s", entry.key, entry.seq, exc_info=True)
            if not entry.future.done():
                entry.future.set_exception(exc)
        else:
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            self._running -= 1
            self._active_keys.discard(entry.key)
            self._admit()

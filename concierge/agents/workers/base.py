# agents/workers/base.py
"""
Shared worker plumbing.

Every capability worker has the same shape: an async handler computing a
data dict from (WorkerInput, WorkerDeps). run_worker wraps a handler with
latency measurement, the worker timeout and the turn's cancellation token,
and converts any failure into WorkerResult(success=False) so one worker can
never abort a turn.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from loguru import logger

from concierge.config import Settings
from concierge.interfaces.availability_provider import AvailabilityProvider
from concierge.interfaces.catalog_store import CatalogStore
from concierge.interfaces.kv_store import KeyValueStore
from concierge.interfaces.search_index import SearchIndex
from concierge.schemas import (
    IntentClassification,
    WorkerResult,
    WorkerSnapshot,
    WorkerType,
)


@dataclass
class WorkerDeps:
    """Collaborators shared by all workers"""
    catalog: CatalogStore
    config: Settings
    kv: Optional[KeyValueStore] = None
    search_index: Optional[SearchIndex] = None
    availability_provider: Optional[AvailabilityProvider] = None


@dataclass(frozen=True)
class WorkerInput:
    """Classification plus a read-only context snapshot for one turn"""
    intent: IntentClassification
    context: WorkerSnapshot
    previous_results: Tuple[WorkerResult, ...] = field(default_factory=tuple)
    cancel: Optional[asyncio.Event] = None

    def result_for(self, worker: WorkerType) -> Optional[WorkerResult]:
        """Successful result of an earlier worker in this turn, if any"""
        for result in self.previous_results:
            if result.worker == worker and result.success:
                return result
        return None


WorkerHandler = Callable[[WorkerInput, WorkerDeps], Awaitable[Dict[str, Any]]]


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


async def _await_unless_cancelled(
    coro: Awaitable[Dict[str, Any]],
    cancel: Optional[asyncio.Event],
    timeout: float,
) -> Optional[Dict[str, Any]]:
    """
    Run a handler under a timeout, racing it against the cancellation token.
    Returns None when the token fired first.
    """
    if cancel is None:
        return await asyncio.wait_for(coro, timeout=timeout)

    work = asyncio.ensure_future(coro)
    stop = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({work, stop}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if work in done:
            return work.result()
        if stop in done:
            return None
        raise asyncio.TimeoutError()
    finally:
        for task in (work, stop):
            if not task.done():
                task.cancel()


async def run_worker(
    worker: WorkerType,
    handler: WorkerHandler,
    worker_input: WorkerInput,
    deps: WorkerDeps,
) -> WorkerResult:
    """
    Execute a worker handler and always return a WorkerResult.

    Args:
        worker: Which worker is running
        handler: Coroutine function computing the result data
        worker_input: Classification, snapshot and earlier results
        deps: Collaborators

    Returns:
        WorkerResult: success with data, or failure with an error string
    """
    start = time.perf_counter()
    timeout = deps.config.WORKER_TIMEOUT_SECONDS

    if worker_input.cancel is not None and worker_input.cancel.is_set():
        return WorkerResult(worker=worker, success=False, error="cancelled", latency_ms=0.0)

    try:
        data = await _await_unless_cancelled(handler(worker_input, deps), worker_input.cancel, timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{worker.value} worker timed out after {timeout}s")
        return WorkerResult(worker=worker, success=False, error=f"timed out after {timeout}s",
                            latency_ms=_elapsed_ms(start))
    except Exception as e:
        logger.error(f"{worker.value} worker failed: {e}")
        return WorkerResult(worker=worker, success=False, error=str(e) or e.__class__.__name__,
                            latency_ms=_elapsed_ms(start))

    if data is None:
        logger.info(f"{worker.value} worker cancelled")
        return WorkerResult(worker=worker, success=False, error="cancelled", latency_ms=_elapsed_ms(start))

    latency = _elapsed_ms(start)
    logger.debug(f"{worker.value} worker completed in {latency}ms")
    return WorkerResult(worker=worker, success=True, data=data, latency_ms=latency)

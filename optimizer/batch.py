"""Bounded-concurrency batch execution with partial-failure tolerance."""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from optimizer.errors import OptimizationError, ServiceError, TaskCancelledError, ValidationError
from optimizer.orchestrator import OptimizationOrchestrator
from optimizer.schemas import (
    BatchFailure, BatchResult, BatchSummary, BatchTask, OptimizationResult, StrategyKey,
)
from optimizer.settings import Settings, settings as default_settings
from optimizer.validation import coerce_task

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

def _describe(exc: BaseException) -> Tuple[str, str]:
    """(message, error type) for a failed task; service errors report their cause."""
    if isinstance(exc, ServiceError) and exc.cause is not None:
        return str(exc), type(exc.cause).__name__
    return str(exc) or type(exc).__name__, type(exc).__name__

def summarize(total: int, results: List[OptimizationResult]) -> BatchSummary:
    successes = len(results)
    return BatchSummary(
        total_files=total,
        successful_optimizations=successes,
        failed_optimizations=total - successes,
        total_size_reduction=round(sum(r.size_reduction for r in results) / successes, 2) if successes else 0.0,
        average_quality_score=round(sum(r.quality_score for r in results) / successes, 2) if successes else 0.0,
        total_processing_time=sum(r.processing_time for r in results),
    )

class BatchCoordinator:
    """
    Runs many orchestrations through a fixed pool of workers.

    Workers pull from a queue and run one task to completion before taking
    the next. The completed counter is only touched on the event loop
    thread, so progress updates need no lock.
    """

    def __init__(self, orchestrator: OptimizationOrchestrator, config: Optional[Settings] = None):
        self.orchestrator = orchestrator
        self.config = config or default_settings

    def _worker_count(self, task_count: int, max_concurrent: Optional[int]) -> int:
        requested = self.config.DEFAULT_MAX_CONCURRENT if max_concurrent is None else max_concurrent
        if requested < 1:
            raise ValidationError("maxConcurrent must be at least 1")
        return max(1, min(task_count, requested, self.config.MAX_CONCURRENT_CAP))

    def _validate(self, tasks: Sequence[Any]) -> List[BatchTask]:
        if not tasks:
            raise ValidationError("No files provided")
        if len(tasks) > self.config.MAX_BATCH_SIZE:
            raise ValidationError(
                f"Too many files: {len(tasks)} exceeds the limit of {self.config.MAX_BATCH_SIZE}"
            )
        return [coerce_task(task) for task in tasks]

    async def batch_optimize(
        self,
        tasks: Sequence[Union[BatchTask, Mapping[str, Any]]],
        *,
        max_concurrent: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        strategy: Union[StrategyKey, str, None] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """
        Optimize every task; failures are collected, never raised.

        Raises:
            ValidationError: If the batch is empty, too large, or malformed
        """
        batch = self._validate(tasks)
        default_strategy = self._parse_strategy(strategy)
        total = len(batch)
        workers = self._worker_count(total, max_concurrent)

        logger.info("Starting batch optimization total=%d workers=%d", total, workers)

        queue: asyncio.Queue = asyncio.Queue()
        for index, task in enumerate(batch):
            queue.put_nowait((index, task))

        successes: Dict[int, OptimizationResult] = {}
        failures: Dict[int, BatchFailure] = {}
        completed = 0

        def settle() -> None:
            nonlocal completed
            completed += 1
            if on_progress is not None:
                on_progress(completed, total)

        async def worker(worker_id: int) -> None:
            while True:
                try:
                    index, task = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                if cancel_event is not None and cancel_event.is_set():
                    failures[index] = BatchFailure(
                        ref=task.ref,
                        error="Batch cancelled before task started",
                        error_type=TaskCancelledError.__name__,
                    )
                    settle()
                    continue

                options = task.options
                if options.strategy is None and default_strategy is not None:
                    options = options.model_copy(update={"strategy": default_strategy})

                try:
                    successes[index] = await self.orchestrator.optimize_content(
                        task.ref, task.content_type, options, cancel_event=cancel_event
                    )
                except Exception as exc:
                    message, error_type = _describe(exc)
                    if isinstance(exc, OptimizationError):
                        logger.warning("Batch task %s failed on worker %d: %s", task.ref, worker_id, message)
                    else:
                        logger.exception("Batch task %s crashed on worker %d", task.ref, worker_id)
                    failures[index] = BatchFailure(ref=task.ref, error=message, error_type=error_type)
                settle()

        await asyncio.gather(*(worker(i) for i in range(workers)))

        results = [successes[i] for i in sorted(successes)]
        failure_list = [failures[i] for i in sorted(failures)]
        summary = summarize(total, results)

        logger.info(
            "Batch optimization completed total=%d succeeded=%d failed=%d",
            total, summary.successful_optimizations, summary.failed_optimizations,
        )
        return BatchResult(results=results, failures=failure_list, summary=summary)

    @staticmethod
    def _parse_strategy(strategy: Union[StrategyKey, str, None]) -> Optional[StrategyKey]:
        if strategy is None or isinstance(strategy, StrategyKey):
            return strategy
        try:
            return StrategyKey(strategy)
        except ValueError:
            raise ValidationError(f"Invalid strategy: {strategy}") from None

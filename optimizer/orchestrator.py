"""Single-file optimization pipeline: analyze, resolve, encode, with retries."""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Tuple, TypeVar, Union

from optimizer.analyzer import MediaAnalyzer
from optimizer.errors import (
    CorruptInputError, RetryableError, ServiceError, StorageError, TaskCancelledError,
    TaskTimeoutError, UnsupportedFormatError,
)
from optimizer.image_utils import compute_content_hash
from optimizer.resolver import StrategyResolver
from optimizer.schemas import (
    ContentAnalysis, ContentType, OptimizationOptions, OptimizationResult, Output,
    ResolvedPlan, StrategyKey,
)
from optimizer.settings import Settings, settings as default_settings
from optimizer.storage import StorageAdapter
from optimizer.strategies import StrategyCatalog
from optimizer.telemetry import LoggingTelemetrySink, TelemetrySink
from optimizer.transcoders import EncodedOutput, Transcoder
from optimizer.validation import coerce_content_type, coerce_options, require_ref

T = TypeVar("T")

logger = logging.getLogger(__name__)

EXTENSIONS = {"jpeg": "jpg"}

class OptimizationState(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    RESOLVING = "resolving"
    ENCODING = "encoding"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

TransitionCallback = Callable[[OptimizationState], None]

@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limits per error class and exponential backoff."""

    max_attempts: int = 3
    storage_max_attempts: int = 2
    timeout_max_attempts: int = 2
    base_delay: float = 0.2

    @classmethod
    def from_settings(cls, config: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            storage_max_attempts=config.STORAGE_RETRY_MAX_ATTEMPTS,
            timeout_max_attempts=config.TIMEOUT_RETRY_MAX_ATTEMPTS,
            base_delay=config.RETRY_BASE_DELAY_MS / 1000,
        )

    def attempts_for(self, exc: BaseException) -> int:
        if isinstance(exc, StorageError):
            return self.storage_max_attempts
        if isinstance(exc, TaskTimeoutError):
            return self.timeout_max_attempts
        if isinstance(exc, RetryableError):
            return self.max_attempts
        return 1

    def delay(self, failed_attempts: int) -> float:
        """Backoff before the next try: base x 2^(failures so far - 1)."""
        return self.base_delay * (2 ** (failed_attempts - 1))

class _StateTracker:
    """Records state transitions of one optimization request."""

    def __init__(self, ref: str, callback: Optional[TransitionCallback]):
        self.ref = ref
        self.state = OptimizationState.PENDING
        self.history: List[OptimizationState] = [self.state]
        self._callback = callback

    def move(self, state: OptimizationState) -> None:
        logger.debug("%s: %s -> %s", self.ref, self.state.value, state.value)
        self.state = state
        self.history.append(state)
        if self._callback is not None:
            self._callback(state)

class OptimizationOrchestrator:
    """
    Runs Analyze -> Resolve -> Encode for a single file.

    Blocking analyzer and transcoder calls run on worker threads so many
    orchestrations can progress concurrently on one event loop.
    """

    def __init__(
        self,
        *,
        catalog: StrategyCatalog,
        analyzer: MediaAnalyzer,
        transcoders: Mapping[ContentType, Transcoder],
        storage: StorageAdapter,
        resolver: Optional[StrategyResolver] = None,
        telemetry: Optional[TelemetrySink] = None,
        retry_policy: Optional[RetryPolicy] = None,
        task_timeout: Optional[float] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or default_settings
        self.catalog = catalog
        self.analyzer = analyzer
        self.transcoders = dict(transcoders)
        self.storage = storage
        self.resolver = resolver or StrategyResolver(catalog, self.config)
        self.telemetry = telemetry or LoggingTelemetrySink()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.config)
        self.task_timeout = task_timeout or self.config.TASK_TIMEOUT_SECONDS
        self._sleep = self._wrap_sleep(sleep)

    @staticmethod
    def _wrap_sleep(
        sleep: Optional[Callable[[float], Any]],
    ) -> Callable[[float], Awaitable[None]]:
        if sleep is None:
            return asyncio.sleep

        async def _async_sleep(seconds: float) -> None:
            result = sleep(seconds)
            if inspect.isawaitable(result):
                await result

        return _async_sleep

    @staticmethod
    async def _run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` in a worker thread to avoid blocking the event loop."""
        return await asyncio.to_thread(func, *args, **kwargs)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def analyze_content(self, ref: str, content_type: Union[ContentType, str]) -> ContentAnalysis:
        """Read ``ref`` from storage and analyze it (no retry on corrupt input)."""
        ref = require_ref(ref)
        content_type = coerce_content_type(content_type)
        data = await self._with_retry("read", lambda: self._read(ref))
        return await self._with_retry(
            "analysis", lambda: self._run_sync(self.analyzer.analyze, data, content_type)
        )

    async def optimize_content(
        self,
        ref: str,
        content_type: Union[ContentType, str],
        options: Union[OptimizationOptions, Mapping[str, Any], None] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        on_transition: Optional[TransitionCallback] = None,
    ) -> OptimizationResult:
        """
        Optimize one stored file.

        Raises:
            ValidationError: For bad enum values or unknown strategies
            AnalysisError, CorruptInputError, UnsupportedFormatError: Fatal input errors
            ServiceError: When transient failures exhaust their retries
            TaskCancelledError: When ``cancel_event`` aborts a retry loop
        """
        start = time.perf_counter()
        ref = require_ref(ref)
        content_type = coerce_content_type(content_type)
        options = coerce_options(options)
        tracker = _StateTracker(ref, on_transition)

        logger.info(
            "Starting content optimization ref=%s type=%s strategy=%s",
            ref, content_type.value, options.strategy.value if options.strategy else "auto",
        )

        try:
            data = await self._with_retry("read", lambda: self._read(ref), cancel_event)
            original_size = len(data)
            if original_size == 0:
                raise CorruptInputError(f"Source {ref} is empty")

            plan, outputs = await self._run_with_timeout(
                data, content_type, options, tracker, cancel_event
            )
        except BaseException as exc:
            tracker.move(OptimizationState.FAILED)
            logger.error("Content optimization failed ref=%s: %s", ref, exc)
            raise

        result = self._build_result(original_size, plan, outputs, start)
        tracker.move(OptimizationState.SUCCEEDED)

        logger.info(
            "Content optimization completed ref=%s strategy=%s reduction=%.2f quality=%.1f ms=%d",
            ref, result.strategy, result.size_reduction, result.quality_score, result.processing_time,
        )
        if options.enable_analytics:
            self._emit_telemetry(ref, content_type, options, result)
        return result

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    async def _run_with_timeout(
        self,
        data: bytes,
        content_type: ContentType,
        options: OptimizationOptions,
        tracker: _StateTracker,
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[ResolvedPlan, List[Output]]:
        limit = self.retry_policy.timeout_max_attempts
        for attempt in range(1, limit + 1):
            try:
                return await asyncio.wait_for(
                    self._pipeline(data, content_type, options, tracker, cancel_event),
                    timeout=self.task_timeout,
                )
            except asyncio.TimeoutError:
                error = TaskTimeoutError(f"Task exceeded {self.task_timeout}s")
                if attempt >= limit:
                    raise ServiceError(
                        f"Optimization timed out after {attempt} attempts", cause=error
                    ) from error
                logger.warning("%s: attempt %d/%d timed out; retrying", tracker.ref, attempt, limit)
                self._check_cancelled(cancel_event)
        raise AssertionError("unreachable")

    async def _pipeline(
        self,
        data: bytes,
        content_type: ContentType,
        options: OptimizationOptions,
        tracker: _StateTracker,
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[ResolvedPlan, List[Output]]:
        analysis = None
        if options.strategy in (None, StrategyKey.AUTO):
            tracker.move(OptimizationState.ANALYZING)
            analysis = await self._with_retry(
                "analysis",
                lambda: self._run_sync(self.analyzer.analyze, data, content_type),
                cancel_event,
            )

        tracker.move(OptimizationState.RESOLVING)
        plan = self.resolver.resolve(
            options.strategy, analysis, options.target_device, options.target_connection, content_type
        )

        tracker.move(OptimizationState.ENCODING)
        transcoder = self.transcoders.get(content_type)
        if transcoder is None:
            raise UnsupportedFormatError(f"No transcoder registered for {content_type.value}")

        encoded = await self._with_retry(
            "encoding",
            lambda: self._run_sync(
                transcoder.encode, data, plan, preserve_metadata=options.preserve_metadata
            ),
            cancel_event,
        )
        if not encoded:
            raise UnsupportedFormatError(f"Plan for {content_type.value} produced no outputs")

        outputs = await self._write_outputs(data, plan, encoded, cancel_event)
        return plan, outputs

    async def _with_retry(
        self,
        stage: str,
        operation: Callable[[], Awaitable[T]],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """Run ``operation``, retrying retryable errors with exponential backoff."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except RetryableError as exc:
                limit = self.retry_policy.attempts_for(exc)
                if attempt >= limit:
                    raise ServiceError(
                        f"{stage} failed after {attempt} attempts: {exc}", cause=exc
                    ) from exc
                delay = self.retry_policy.delay(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (%s); retrying in %.2fs",
                    stage, attempt, limit, exc, delay,
                )
                self._check_cancelled(cancel_event)
                await self._sleep(delay)
                self._check_cancelled(cancel_event)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise TaskCancelledError("Cancelled while retrying")

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    async def _read(self, ref: str) -> bytes:
        try:
            return await self.storage.get(ref)
        except OSError as e:
            raise StorageError(f"Failed to read {ref}: {e}") from e

    async def _save(self, key: str, data: bytes) -> str:
        try:
            return await self.storage.save(key, data)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def _write_outputs(
        self,
        data: bytes,
        plan: ResolvedPlan,
        encoded: List[EncodedOutput],
        cancel_event: Optional[asyncio.Event],
    ) -> List[Output]:
        digest = compute_content_hash(data)[:16]
        outputs: List[Output] = []
        try:
            for item in encoded:
                extension = EXTENSIONS.get(item.target.format, item.target.format)
                key = f"{self.config.OUTPUT_PREFIX}/{digest}/{plan.strategy_key}/{item.target.label}.{extension}"
                url = await self._with_retry(
                    "write", lambda key=key, payload=item.data: self._save(key, payload), cancel_event
                )
                outputs.append(
                    Output(
                        quality=item.target.label,
                        format=item.target.format,
                        size=item.size,
                        url=url,
                        optimizations=item.optimizations,
                    )
                )
        except BaseException:
            await self._discard(outputs)
            raise
        return outputs

    async def _discard(self, outputs: List[Output]) -> None:
        """Remove outputs already written when a later write fails."""
        for output in outputs:
            try:
                await self.storage.delete(output.url)
            except OSError as e:
                logger.warning("Could not remove partial output %s: %s", output.url, e)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    @staticmethod
    def quality_score(plan: ResolvedPlan, output_count: int) -> float:
        """Effective threshold plus a small bonus for adaptive variants."""
        bonus = min(5 * max(output_count - 1, 0), 10)
        return float(min(100, plan.quality_threshold + bonus))

    def _build_result(
        self,
        original_size: int,
        plan: ResolvedPlan,
        outputs: List[Output],
        start: float,
    ) -> OptimizationResult:
        # The primary (first) output is the delivered rendition
        optimized_size = min(outputs[0].size, original_size)
        size_reduction = round((original_size - optimized_size) / original_size * 100, 2)
        return OptimizationResult(
            original_size=original_size,
            optimized_size=optimized_size,
            size_reduction=size_reduction,
            quality_score=self.quality_score(plan, len(outputs)),
            processing_time=int((time.perf_counter() - start) * 1000),
            strategy=plan.strategy_key,
            outputs=outputs,
        )

    def _emit_telemetry(
        self,
        ref: str,
        content_type: ContentType,
        options: OptimizationOptions,
        result: OptimizationResult,
    ) -> None:
        event = {
            "event": "content_optimized",
            "ref": ref,
            "content_type": content_type.value,
            "content_id": options.content_id,
            "artist_id": options.artist_id,
            "strategy": result.strategy,
            "size_reduction": result.size_reduction,
            "quality_score": result.quality_score,
            "processing_time": result.processing_time,
        }
        try:
            self.telemetry.record(event)
        except Exception:
            logger.exception("Telemetry sink failed for %s", ref)

"""Engine boundary: the operations exposed to the surrounding application."""

import asyncio
from typing import Any, List, Mapping, Optional, Sequence, Union

from optimizer.analyzer import MediaAnalyzer
from optimizer.batch import BatchCoordinator, ProgressCallback
from optimizer.media_backend import BackendGate, FFmpegBackend, MediaBackend
from optimizer.orchestrator import OptimizationOrchestrator, RetryPolicy
from optimizer.schemas import (
    BatchResult, BatchTask, ContentAnalysis, ContentType, OptimizationOptions,
    OptimizationResult, StrategyInfo,
)
from optimizer.settings import Settings, settings as default_settings
from optimizer.storage import StorageAdapter, get_storage_adapter
from optimizer.strategies import StrategyCatalog, build_default_catalog
from optimizer.telemetry import TelemetrySink
from optimizer.transcoders import Transcoder, build_transcoders

class ContentOptimizationService:
    """Facade over the orchestrator, batch coordinator and strategy catalog."""

    def __init__(
        self,
        orchestrator: OptimizationOrchestrator,
        batch: Optional[BatchCoordinator] = None,
    ):
        self.orchestrator = orchestrator
        self.catalog = orchestrator.catalog
        self.batch = batch or BatchCoordinator(orchestrator, orchestrator.config)

    async def analyze_content(self, ref: str, content_type: Union[ContentType, str]) -> ContentAnalysis:
        return await self.orchestrator.analyze_content(ref, content_type)

    async def optimize_content(
        self,
        ref: str,
        content_type: Union[ContentType, str],
        options: Union[OptimizationOptions, Mapping[str, Any], None] = None,
    ) -> OptimizationResult:
        return await self.orchestrator.optimize_content(ref, content_type, options)

    async def batch_optimize(
        self,
        tasks: Sequence[Union[BatchTask, Mapping[str, Any]]],
        *,
        max_concurrent: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        strategy: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        return await self.batch.batch_optimize(
            tasks,
            max_concurrent=max_concurrent,
            on_progress=on_progress,
            strategy=strategy,
            cancel_event=cancel_event,
        )

    def list_strategies(self) -> List[StrategyInfo]:
        return self.catalog.list()

    # Shortcuts for common targets
    async def optimize_for_mobile(self, ref: str, content_type: Union[ContentType, str]) -> OptimizationResult:
        return await self.optimize_content(
            ref, content_type,
            {"strategy": "mobile", "target_device": "mobile", "target_connection": "4g"},
        )

    async def optimize_for_streaming(self, ref: str, content_type: Union[ContentType, str]) -> OptimizationResult:
        return await self.optimize_content(
            ref, content_type,
            {"strategy": "streaming", "target_device": "desktop", "target_connection": "wifi"},
        )

    async def optimize_for_size(self, ref: str, content_type: Union[ContentType, str]) -> OptimizationResult:
        return await self.optimize_content(ref, content_type, {"strategy": "aggressive"})

    async def optimize_for_quality(self, ref: str, content_type: Union[ContentType, str]) -> OptimizationResult:
        return await self.optimize_content(ref, content_type, {"strategy": "quality"})

def build_service(
    *,
    storage: Optional[StorageAdapter] = None,
    backend: Optional[MediaBackend] = None,
    catalog: Optional[StrategyCatalog] = None,
    transcoders: Optional[Mapping[ContentType, Transcoder]] = None,
    telemetry: Optional[TelemetrySink] = None,
    retry_policy: Optional[RetryPolicy] = None,
    config: Optional[Settings] = None,
    sleep=None,
) -> ContentOptimizationService:
    """Wire the engine from settings, overriding any collaborator."""
    config = config or default_settings
    backend = backend or FFmpegBackend(config.FFMPEG_PATH, config.FFPROBE_PATH, config.FFMPEG_TIMEOUT_SECONDS)
    catalog = catalog or build_default_catalog()

    orchestrator = OptimizationOrchestrator(
        catalog=catalog,
        analyzer=MediaAnalyzer(backend, config),
        transcoders=transcoders or build_transcoders(backend, BackendGate(config.BACKEND_SLOTS)),
        storage=storage or get_storage_adapter(config.STORAGE_BASE_PATH),
        telemetry=telemetry,
        retry_policy=retry_policy,
        sleep=sleep,
        config=config,
    )
    return ContentOptimizationService(orchestrator)

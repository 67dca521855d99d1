"""Strategy resolution: turn a strategy request into concrete output targets."""
import logging
from enum import Enum
from typing import List, Optional, Union

from optimizer.errors import ValidationError
from optimizer.schemas import (
    ContentAnalysis, ContentType, OutputTarget, ResolvedPlan, StrategyDefinition,
    TargetConnection, TargetDevice,
)
from optimizer.settings import Settings, settings as default_settings
from optimizer.strategies import AUTO, StrategyCatalog

logger = logging.getLogger(__name__)

SLOW_CONNECTIONS = {TargetConnection.TWO_G, TargetConnection.THREE_G}
FAST_CONNECTIONS = {TargetConnection.FIVE_G, TargetConnection.WIFI}

# Audio bitrate ladder: (minimum effective quality threshold, kbps)
AUDIO_BITRATES = [(95, 320), (85, 192), (80, 160), (75, 128), (0, 96)]
AUDIO_SAMPLE_RATE = 44100
AUDIO_HIGH_SAMPLE_RATE = 48000


def _value(member: Union[Enum, str, None]) -> Optional[str]:
    return member.value if isinstance(member, Enum) else member


def _clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))


class StrategyResolver:
    """Resolves (strategy | auto + analysis, device, connection, type) into a plan."""

    def __init__(self, catalog: StrategyCatalog, config: Optional[Settings] = None):
        self.catalog = catalog
        self.config = config or default_settings

    def resolve(
        self,
        strategy: Union[str, Enum, None],
        analysis: Optional[ContentAnalysis],
        target_device: Union[TargetDevice, str, None],
        target_connection: Union[TargetConnection, str, None],
        content_type: ContentType,
    ) -> ResolvedPlan:
        """
        Build a ResolvedPlan.

        Raises:
            UnknownStrategyError: If an explicit strategy is not in the catalog
            ValidationError: If auto resolution is requested without analysis,
                or device/connection are not known values
        """
        key = _value(strategy)
        device = self._parse(TargetDevice, target_device, "target device")
        connection = self._parse(TargetConnection, target_connection, "target connection")

        if key is None or key == AUTO:
            if analysis is None:
                raise ValidationError("Auto strategy requires a content analysis")
            key = analysis.recommended_strategy

        definition = self.catalog.lookup(key)
        threshold = self.effective_quality_threshold(definition, device, connection)

        if content_type == ContentType.IMAGE:
            targets = self._image_targets(definition, threshold, device, connection)
        elif content_type == ContentType.VIDEO:
            targets = self._video_targets(definition, threshold, device, connection, analysis)
        elif content_type == ContentType.AUDIO:
            targets = self._audio_targets(threshold, connection)
        else:
            raise ValidationError(f"Unsupported content type: {content_type}")

        logger.debug(
            "Resolved strategy=%s type=%s threshold=%d targets=%s",
            key, content_type.value, threshold, [t.label for t in targets],
        )
        return ResolvedPlan(
            strategy_key=key,
            content_type=content_type,
            definition=definition,
            quality_threshold=threshold,
            targets=targets,
        )

    @staticmethod
    def _parse(enum_cls, value, field: str):
        if value is None or isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)
        except ValueError:
            raise ValidationError(f"Invalid {field}: {value}") from None

    @staticmethod
    def effective_quality_threshold(
        definition: StrategyDefinition,
        device: Optional[TargetDevice],
        connection: Optional[TargetConnection],
    ) -> int:
        """Quality threshold after device/connection clamps (never reorders strategies)."""
        threshold = definition.quality_threshold
        if device == TargetDevice.MOBILE:
            threshold = min(threshold, 80)
        if connection in SLOW_CONNECTIONS:
            threshold = min(threshold, 75)
        if device == TargetDevice.TV and connection in FAST_CONNECTIONS:
            threshold = max(threshold, 90)
        return threshold

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    def _image_max_dimension(
        self,
        definition: StrategyDefinition,
        device: Optional[TargetDevice],
        connection: Optional[TargetConnection],
    ) -> int:
        cfg = self.config
        # Shrinks linearly with the size-reduction target: 20% -> 0.9x, 60% -> 0.7x
        dimension = int(cfg.IMAGE_BASE_MAX_DIMENSION * (1 - definition.target_size_reduction / 200))
        if device == TargetDevice.TV:
            dimension = min(int(dimension * 1.5), cfg.IMAGE_TV_MAX_DIMENSION)
        elif device == TargetDevice.MOBILE:
            dimension = min(dimension, cfg.IMAGE_MOBILE_MAX_DIMENSION)
        if connection in SLOW_CONNECTIONS:
            dimension //= 2
        return dimension

    def _image_targets(
        self,
        definition: StrategyDefinition,
        threshold: int,
        device: Optional[TargetDevice],
        connection: Optional[TargetConnection],
    ) -> List[OutputTarget]:
        max_dimension = self._image_max_dimension(definition, device, connection)
        targets = [
            OutputTarget(
                kind="image",
                label="primary",
                format="webp",
                quality=_clamp(threshold - 5, 1),
                max_dimension=max_dimension,
            )
        ]
        if definition.target_size_reduction <= 60 and connection != TargetConnection.TWO_G:
            targets.append(
                OutputTarget(
                    kind="image",
                    label="fallback",
                    format="jpeg",
                    quality=_clamp(threshold, 1),
                    max_dimension=max_dimension,
                )
            )
        return targets

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------
    def _video_targets(
        self,
        definition: StrategyDefinition,
        threshold: int,
        device: Optional[TargetDevice],
        connection: Optional[TargetConnection],
        analysis: Optional[ContentAnalysis],
    ) -> List[OutputTarget]:
        cfg = self.config
        ladder = list(cfg.VIDEO_LADDER)  # highest first
        source_height = analysis.dimensions.height if analysis else 0

        top = "720p" if definition.target_size_reduction >= 60 else "1080p"
        if device == TargetDevice.MOBILE:
            top = self._lower_of(ladder, top, "720p")
        if connection in SLOW_CONNECTIONS:
            top = self._lower_of(ladder, top, "480p")
        if device == TargetDevice.TV:
            lifted = "1080p"
            if threshold >= 90 and source_height >= cfg.VIDEO_LADDER["2160p"][1]:
                lifted = "2160p"
            top = lifted if connection not in SLOW_CONNECTIONS else top

        rungs = ladder[ladder.index(top):]
        if source_height:
            fitting = [name for name in rungs if cfg.VIDEO_LADDER[name][1] <= source_height]
            rungs = fitting or rungs[-1:]
        rungs = rungs[:cfg.VIDEO_MAX_RUNGS]

        # Bitrate scale: 20% target -> 1.33x, 40% -> 1.0x, 60% -> 0.67x
        keep = 100 - definition.target_size_reduction
        targets = []
        for name in rungs:
            width, height, video_kbps, audio_kbps = cfg.VIDEO_LADDER[name]
            targets.append(
                OutputTarget(
                    kind="video",
                    label=name,
                    format="mp4",
                    quality=threshold,
                    width=width,
                    height=height,
                    video_bitrate_kbps=max(100, video_kbps * keep // 60),
                    audio_bitrate_kbps=audio_kbps,
                )
            )

        thumb_w, thumb_h = (
            cfg.MOBILE_THUMBNAIL_SIZE if device == TargetDevice.MOBILE else cfg.THUMBNAIL_SIZE
        )
        seek = cfg.THUMBNAIL_SEEK_SECONDS
        if analysis is not None and analysis.duration:
            seek = min(seek, analysis.duration / 2)
        targets.append(
            OutputTarget(
                kind="thumbnail",
                label="thumbnail",
                format="jpeg",
                quality=_clamp(threshold, 1),
                width=thumb_w,
                height=thumb_h,
                seek_seconds=round(seek, 3),
            )
        )
        return targets

    @staticmethod
    def _lower_of(ladder: List[str], a: str, b: str) -> str:
        return a if ladder.index(a) >= ladder.index(b) else b

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------
    def _audio_targets(
        self, threshold: int, connection: Optional[TargetConnection]
    ) -> List[OutputTarget]:
        bitrate = next(kbps for minimum, kbps in AUDIO_BITRATES if threshold >= minimum)
        if connection == TargetConnection.TWO_G:
            bitrate = min(bitrate, 64)
        elif connection == TargetConnection.THREE_G:
            bitrate = min(bitrate, 96)
        return [
            OutputTarget(
                kind="audio",
                label=f"{bitrate}k",
                format="m4a",
                quality=threshold,
                audio_bitrate_kbps=bitrate,
                sample_rate=AUDIO_HIGH_SAMPLE_RATE if bitrate >= 320 else AUDIO_SAMPLE_RATE,
            )
        ]

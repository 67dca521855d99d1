"""Media analysis: inspect raw bytes and recommend a strategy."""
import logging
import time
from collections import Counter
from dataclasses import dataclass
from statistics import mean
from typing import List, Optional

from optimizer.errors import (
    AnalysisError, CorruptInputError, UnsupportedFormatError, ValidationError,
)
from optimizer.image_utils import (
    dominant_colors, edge_density, extreme_fraction, frame_difference, is_monochrome,
    luma_stddev, make_thumbnail, noise_residual, open_image_from_bytes, palette_size,
    sample_tiles, skin_fraction,
)
from optimizer.media_backend import MediaBackend
from optimizer.schemas import ContentAnalysis, ContentType, Dimensions
from optimizer.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


@dataclass
class VisualFeatures:
    """Per-image measurements feeding the classification."""
    width: int
    height: int
    edge_density: float
    stddev: float
    extreme_fraction: float
    noise: float
    monochrome: bool
    colors: Optional[int]  # None when above the limited-palette bound
    skin_fraction: float
    text_like: bool
    dominant_colors: List[str]


class MediaAnalyzer:
    """
    Content-aware analysis for images, video and audio.

    Pure with respect to its input bytes: identical data always yields the
    same ContentAnalysis. Video and audio metadata come from the injected
    MediaBackend (ffprobe in production).
    """

    def __init__(self, backend: Optional[MediaBackend] = None, config: Optional[Settings] = None):
        self.backend = backend
        self.config = config or default_settings

    def analyze(self, data: bytes, content_type: ContentType) -> ContentAnalysis:
        """
        Analyze media bytes.

        Raises:
            AnalysisError: If the media is corrupt or unreadable
            TranscodeBackendError: If the probe backend fails transiently
        """
        start = time.perf_counter()

        if content_type == ContentType.IMAGE:
            analysis = self._analyze_image(data)
        elif content_type == ContentType.VIDEO:
            analysis = self._analyze_video(data)
        elif content_type == ContentType.AUDIO:
            analysis = self._analyze_audio(data)
        else:
            raise ValidationError(f"Unsupported content type: {content_type}")

        logger.info(
            "Content analysis completed type=%s complexity=%s recommended=%s elapsed_ms=%d",
            content_type.value, analysis.complexity, analysis.recommended_strategy,
            (time.perf_counter() - start) * 1000,
        )
        return analysis

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    def _visual_features(self, image) -> VisualFeatures:
        cfg = self.config
        tiles = sample_tiles(image, cfg.ANALYSIS_TILE_SIZE, cfg.ANALYSIS_TILE_GRID)

        densities = [edge_density(t, cfg.EDGE_PIXEL_THRESHOLD) for t in tiles]
        stddevs = [luma_stddev(t) for t in tiles]
        extremes = [extreme_fraction(t) for t in tiles]
        noises = [noise_residual(t, cfg.EDGE_PIXEL_THRESHOLD) for t in tiles]

        # A tile reads as text when it is edge-dense, high contrast and
        # mostly ink-or-paper rather than mid-tones
        text_tiles = sum(
            1 for d, s, x in zip(densities, stddevs, extremes)
            if d >= cfg.TEXT_EDGE_DENSITY and s >= cfg.TEXT_MIN_STDDEV and x >= cfg.TEXT_EXTREME_FRACTION
        )

        thumb = make_thumbnail(image, cfg.ANALYSIS_THUMBNAIL_SIZE)
        return VisualFeatures(
            width=image.size[0],
            height=image.size[1],
            edge_density=mean(densities),
            stddev=mean(stddevs),
            extreme_fraction=mean(extremes),
            noise=mean(noises),
            monochrome=is_monochrome(thumb),
            colors=palette_size(thumb, cfg.LIMITED_PALETTE_COLORS),
            skin_fraction=skin_fraction(thumb),
            text_like=text_tiles * 2 > len(tiles),
            dominant_colors=dominant_colors(thumb, cfg.MAX_DOMINANT_COLORS),
        )

    def _complexity(self, features: VisualFeatures) -> str:
        cfg = self.config
        if features.edge_density < cfg.EDGE_DENSITY_LOW or features.stddev < cfg.LUMA_STDDEV_LOW:
            return "low"
        if features.edge_density >= cfg.EDGE_DENSITY_HIGH:
            return "high"
        return "medium"

    def _color_complexity(self, features: VisualFeatures) -> str:
        if features.monochrome:
            return "monochrome"
        if features.colors is not None:
            return "limited"
        return "full"

    def _noise_level(self, features: VisualFeatures) -> str:
        if features.noise >= self.config.NOISE_HEAVY:
            return "heavy"
        if features.noise >= self.config.NOISE_MODERATE:
            return "moderate"
        return "clean"

    def _has_faces(self, features: VisualFeatures, complexity: str) -> bool:
        # Best-effort skin-tone check; misses are acceptable
        cfg = self.config
        return (
            not features.monochrome
            and complexity != "low"
            and cfg.SKIN_FRACTION_MIN <= features.skin_fraction <= cfg.SKIN_FRACTION_MAX
        )

    def _analyze_image(self, data: bytes) -> ContentAnalysis:
        try:
            image = open_image_from_bytes(data)
        except ValueError as e:
            raise AnalysisError(str(e)) from e

        features = self._visual_features(image)
        complexity = self._complexity(features)
        analysis = dict(
            dimensions=Dimensions(width=features.width, height=features.height),
            complexity=complexity,
            color_complexity=self._color_complexity(features),
            noise_level=self._noise_level(features),
            has_text=features.text_like,
            has_faces=self._has_faces(features, complexity),
            dominant_colors=features.dominant_colors,
        )
        return self._finalize(analysis, ContentType.IMAGE)

    # ------------------------------------------------------------------
    # Video / audio
    # ------------------------------------------------------------------
    def _probe(self, data: bytes) -> dict:
        if self.backend is None:
            raise UnsupportedFormatError("No media backend configured for video/audio analysis")
        if not data:
            raise AnalysisError("Invalid media data: empty input")
        try:
            return self.backend.probe(data)
        except CorruptInputError as e:
            raise AnalysisError(str(e)) from e

    @staticmethod
    def _stream(probe: dict, codec_type: str) -> Optional[dict]:
        for stream in probe.get("streams", []):
            if stream.get("codec_type") == codec_type:
                return stream
        return None

    @staticmethod
    def _duration_and_bitrate(probe: dict, size: int):
        fmt = probe.get("format", {})
        duration = float(fmt.get("duration") or 0.0)
        bitrate = int(float(fmt.get("bit_rate") or 0))
        if not bitrate and duration > 0:
            bitrate = int(size * 8 / duration)
        return duration, bitrate

    def _motion_level(self, frames) -> str:
        cfg = self.config
        if len(frames) < 2:
            return "static"
        motion = mean(frame_difference(a, b) for a, b in zip(frames, frames[1:]))
        if motion >= cfg.MOTION_HIGH:
            return "high"
        if motion >= cfg.MOTION_MEDIUM:
            return "medium"
        if motion >= cfg.MOTION_LOW:
            return "low"
        return "static"

    def _analyze_video(self, data: bytes) -> ContentAnalysis:
        probe = self._probe(data)
        stream = self._stream(probe, "video")
        if stream is None:
            raise AnalysisError("No video stream found")

        duration, bitrate = self._duration_and_bitrate(probe, len(data))
        width, height = int(stream.get("width") or 0), int(stream.get("height") or 0)

        frames = []
        for frame_bytes in self.backend.sample_frames(data, self.config.VIDEO_SAMPLE_FRAMES, duration):
            try:
                frames.append(open_image_from_bytes(frame_bytes))
            except ValueError:
                logger.warning("Skipping undecodable sampled frame")

        analysis = dict(
            dimensions=Dimensions(width=width, height=height),
            complexity="medium",
            color_complexity="full",
            noise_level="moderate",
            duration=duration,
            bitrate=bitrate,
            motion_level=self._motion_level(frames),
        )

        if frames:
            per_frame = [self._visual_features(frame) for frame in frames]
            complexities = [self._complexity(f) for f in per_frame]
            # Scene complexity is the most common frame class, ties to the busier one
            order = {"low": 0, "medium": 1, "high": 2}
            counts = Counter(complexities)
            complexity = max(counts, key=lambda c: (counts[c], order[c]))
            majority = len(per_frame) / 2
            analysis.update(
                complexity=complexity,
                color_complexity=self._color_complexity(per_frame[0]),
                noise_level=Counter(self._noise_level(f) for f in per_frame).most_common(1)[0][0],
                has_text=sum(f.text_like for f in per_frame) > majority,
                has_faces=sum(self._has_faces(f, c) for f, c in zip(per_frame, complexities)) > majority,
                dominant_colors=per_frame[0].dominant_colors,
            )

        return self._finalize(analysis, ContentType.VIDEO)

    def _analyze_audio(self, data: bytes) -> ContentAnalysis:
        probe = self._probe(data)
        if self._stream(probe, "audio") is None:
            raise AnalysisError("No audio stream found")

        duration, bitrate = self._duration_and_bitrate(probe, len(data))
        mean_volume, max_volume = self.backend.volume_stats(data)
        spread = max_volume - mean_volume

        if spread >= self.config.DYNAMIC_RANGE_WIDE:
            dynamic_range, complexity = "wide", "high"
        elif spread >= self.config.DYNAMIC_RANGE_MODERATE:
            dynamic_range, complexity = "moderate", "medium"
        else:
            dynamic_range, complexity = "compressed", "low"

        analysis = dict(
            dimensions=Dimensions(),
            complexity=complexity,
            color_complexity="full",
            noise_level="clean",
            duration=duration,
            bitrate=bitrate,
            dynamic_range=dynamic_range,
        )
        return self._finalize(analysis, ContentType.AUDIO)

    # ------------------------------------------------------------------
    # Recommendation
    # ------------------------------------------------------------------
    def _finalize(self, analysis: dict, content_type: ContentType) -> ContentAnalysis:
        analysis["recommended_strategy"] = self.recommend_strategy(analysis, content_type)
        return ContentAnalysis(**analysis)

    def recommend_strategy(self, analysis: dict, content_type: ContentType) -> str:
        """Deterministic strategy choice from analysis fields."""
        cfg = self.config
        has_text = analysis.get("has_text", False)
        has_faces = analysis.get("has_faces", False)
        duration = analysis.get("duration") or 0.0
        bitrate = analysis.get("bitrate") or 0
        dims = analysis["dimensions"]

        if analysis["complexity"] == "low" and not has_text:
            return "aggressive"
        if has_text or has_faces:
            return "quality"
        if content_type in (ContentType.IMAGE, ContentType.VIDEO) and (
            dims.width < cfg.SMALL_VISUAL_WIDTH or dims.height < cfg.SMALL_VISUAL_HEIGHT
        ):
            return "mobile"
        if content_type == ContentType.AUDIO and 0 < bitrate <= cfg.LOW_AUDIO_BITRATE:
            return "mobile"
        if analysis.get("motion_level") == "high" or duration > cfg.LONG_DURATION_SECONDS:
            return "streaming"
        return "balanced"

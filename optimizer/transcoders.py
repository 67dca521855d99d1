"""Per-content-type transcoders selected by a dispatch table, not inheritance."""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from optimizer.errors import (
    CorruptInputError, TranscodeBackendError, UnsupportedFormatError,
)
from optimizer.image_utils import encode_image, open_image_from_bytes
from optimizer.media_backend import BackendGate, MediaBackend
from optimizer.schemas import ContentType, OutputTarget, ResolvedPlan

logger = logging.getLogger(__name__)

PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "png": "PNG"}


@dataclass
class EncodedOutput:
    """Encoded bytes for one target, before they are written to storage."""
    target: OutputTarget
    data: bytes
    optimizations: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.data)


class Transcoder(Protocol):
    def encode(
        self, data: bytes, plan: ResolvedPlan, *, preserve_metadata: bool = False
    ) -> List[EncodedOutput]: ...


def _check_plan(plan: ResolvedPlan, expected: ContentType) -> None:
    if plan.content_type != expected:
        raise UnsupportedFormatError(
            f"{expected.value} transcoder cannot encode a {plan.content_type.value} plan"
        )


def _require_output(data: bytes, label: str) -> bytes:
    if not data:
        raise TranscodeBackendError(f"Backend produced an empty {label} output")
    return data


class ImageTranscoder:
    """Encodes image targets with Pillow."""

    def __init__(self, gate: Optional[BackendGate] = None):
        self.gate = gate or BackendGate()

    def encode(
        self, data: bytes, plan: ResolvedPlan, *, preserve_metadata: bool = False
    ) -> List[EncodedOutput]:
        _check_plan(plan, ContentType.IMAGE)
        try:
            image = open_image_from_bytes(data)
        except ValueError as e:
            raise CorruptInputError(str(e)) from e

        outputs = []
        for target in plan.targets:
            image_format = PIL_FORMATS.get(target.format)
            if image_format is None:
                raise UnsupportedFormatError(f"Unsupported image format: {target.format}")

            try:
                with self.gate.slot():
                    encoded, width, height = encode_image(
                        image, image_format, target.max_dimension, target.quality or 85,
                        preserve_metadata=preserve_metadata,
                    )
            except (OSError, MemoryError) as e:
                raise TranscodeBackendError(f"{image_format} encoder failed: {e}") from e
            logger.debug("Encoded %s as %s %dx%d: %d bytes", target.label, image_format, width, height, len(encoded))

            optimizations = ["quality_adjustment"]
            if (width, height) != image.size:
                optimizations.append("resize")
            if image.format is None or image.format.upper() != image_format:
                optimizations.append("format_conversion")
            if image_format == "JPEG":
                optimizations.append("progressive_encoding")
            if not preserve_metadata:
                optimizations.append("metadata_stripped")

            outputs.append(EncodedOutput(target, _require_output(encoded, target.label), optimizations))
        return outputs


class VideoTranscoder:
    """Encodes a video quality ladder and a thumbnail through a MediaBackend."""

    def __init__(self, backend: MediaBackend, gate: Optional[BackendGate] = None):
        self.backend = backend
        self.gate = gate or BackendGate()

    def encode(
        self, data: bytes, plan: ResolvedPlan, *, preserve_metadata: bool = False
    ) -> List[EncodedOutput]:
        _check_plan(plan, ContentType.VIDEO)
        if not data:
            raise CorruptInputError("Invalid video data: empty input")

        outputs = []
        for target in plan.targets:
            with self.gate.slot():
                if target.kind == "thumbnail":
                    encoded = self.backend.extract_thumbnail(
                        data,
                        width=target.width,
                        height=target.height,
                        quality=target.quality or 85,
                        at_seconds=target.seek_seconds or 0.0,
                    )
                    optimizations = ["thumbnail_extraction", "quality_adjustment"]
                elif target.kind == "video":
                    encoded = self.backend.transcode_video(
                        data,
                        width=target.width,
                        height=target.height,
                        video_bitrate_kbps=target.video_bitrate_kbps,
                        audio_bitrate_kbps=target.audio_bitrate_kbps,
                        preserve_metadata=preserve_metadata,
                    )
                    optimizations = ["transcoding", "bitrate_optimization", "keyframe_optimization"]
                else:
                    raise UnsupportedFormatError(f"Video transcoder cannot produce {target.kind} outputs")
            logger.debug("Encoded %s: %d bytes", target.label, len(encoded or b""))
            outputs.append(EncodedOutput(target, _require_output(encoded, target.label), optimizations))
        return outputs


class AudioTranscoder:
    """Encodes the audio rendition through a MediaBackend."""

    def __init__(self, backend: MediaBackend, gate: Optional[BackendGate] = None):
        self.backend = backend
        self.gate = gate or BackendGate()

    def encode(
        self, data: bytes, plan: ResolvedPlan, *, preserve_metadata: bool = False
    ) -> List[EncodedOutput]:
        _check_plan(plan, ContentType.AUDIO)
        if not data:
            raise CorruptInputError("Invalid audio data: empty input")

        outputs = []
        for target in plan.targets:
            if target.kind != "audio":
                raise UnsupportedFormatError(f"Audio transcoder cannot produce {target.kind} outputs")
            with self.gate.slot():
                encoded = self.backend.transcode_audio(
                    data,
                    bitrate_kbps=target.audio_bitrate_kbps,
                    sample_rate=target.sample_rate,
                    preserve_metadata=preserve_metadata,
                )
            outputs.append(
                EncodedOutput(
                    target,
                    _require_output(encoded, target.label),
                    ["format_conversion", "bitrate_optimization", "normalization"],
                )
            )
        return outputs


def build_transcoders(backend: MediaBackend, gate: Optional[BackendGate] = None) -> Dict[ContentType, Transcoder]:
    """Dispatch table keyed by content type, sharing one backend gate."""
    gate = gate or BackendGate()
    return {
        ContentType.IMAGE: ImageTranscoder(gate),
        ContentType.VIDEO: VideoTranscoder(backend, gate),
        ContentType.AUDIO: AudioTranscoder(backend, gate),
    }

"""ffmpeg/ffprobe backend for video and audio, plus the shared access gate."""
import json
import logging
import os
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Protocol, Tuple

from optimizer.errors import CorruptInputError, TranscodeBackendError, UnsupportedFormatError
from optimizer.settings import settings

logger = logging.getLogger(__name__)

# ffmpeg stderr fragments that mean the input itself is bad
_CORRUPT_MARKERS = (
    "Invalid data found when processing input",
    "moov atom not found",
    "could not find codec parameters",
    "End of file",
)


class BackendGate:
    """
    Bounded semaphore around the transcoding backend.

    Sized to available compute and shared by every transcoder, so the
    number of concurrent encodes stays fixed whatever the batch
    concurrency is.
    """

    def __init__(self, slots: Optional[int] = None):
        self.slots = max(1, slots or settings.BACKEND_SLOTS)
        self._semaphore = threading.BoundedSemaphore(self.slots)

    @contextmanager
    def slot(self) -> Iterator[None]:
        with self._semaphore:
            yield


class MediaBackend(Protocol):
    """Operations the analyzer and transcoders need from a media toolkit."""

    def probe(self, data: bytes) -> dict: ...

    def sample_frames(self, data: bytes, count: int, duration: float) -> List[bytes]: ...

    def volume_stats(self, data: bytes) -> Tuple[float, float]: ...

    def transcode_video(
        self,
        data: bytes,
        *,
        width: int,
        height: int,
        video_bitrate_kbps: int,
        audio_bitrate_kbps: int,
        preserve_metadata: bool = False,
    ) -> bytes: ...

    def extract_thumbnail(
        self, data: bytes, *, width: int, height: int, quality: int, at_seconds: float
    ) -> bytes: ...

    def transcode_audio(
        self,
        data: bytes,
        *,
        bitrate_kbps: int,
        sample_rate: int,
        preserve_metadata: bool = False,
    ) -> bytes: ...


def _jpeg_qscale(quality: int) -> int:
    """Map 0-100 quality onto ffmpeg's mjpeg -q:v scale (2 best, 31 worst)."""
    return max(2, min(31, round(31 - (quality / 100) * 29)))


class FFmpegBackend:
    """MediaBackend implemented with the ffmpeg and ffprobe command-line tools."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH
        self.timeout = timeout or settings.FFMPEG_TIMEOUT_SECONDS

    @contextmanager
    def _workspace(self, data: bytes) -> Iterator[Tuple[Path, Path]]:
        """Temp directory holding the input; yields (input_path, directory)."""
        with tempfile.TemporaryDirectory(prefix="optimizer-") as tmp:
            directory = Path(tmp)
            input_path = directory / "input"
            input_path.write_bytes(data)
            yield input_path, directory

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise TranscodeBackendError(f"{cmd[0]} not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise TranscodeBackendError(f"{cmd[0]} timed out after {self.timeout}s") from e
        except OSError as e:
            raise TranscodeBackendError(f"{cmd[0]} failed to start: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if any(marker in stderr for marker in _CORRUPT_MARKERS):
                raise CorruptInputError(f"Unreadable media: {stderr[-300:]}")
            if "does not contain any stream" in stderr or "matches no streams" in stderr:
                raise UnsupportedFormatError(f"No usable stream: {stderr[-300:]}")
            raise TranscodeBackendError(
                f"{os.path.basename(cmd[0])} exited with {result.returncode}: {stderr[-300:]}"
            )
        return result

    @staticmethod
    def _read_output(output_path: Path) -> bytes:
        """Read an ffmpeg output; ffmpeg can exit 0 without writing one."""
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise TranscodeBackendError(f"ffmpeg wrote no {output_path.name}")
        return output_path.read_bytes()

    def probe(self, data: bytes) -> dict:
        with self._workspace(data) as (input_path, _):
            result = self._run([
                self.ffprobe_path, "-v", "error",
                "-print_format", "json",
                "-show_format", "-show_streams",
                str(input_path),
            ])
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise TranscodeBackendError(f"ffprobe returned invalid JSON: {e}") from e

    def sample_frames(self, data: bytes, count: int, duration: float) -> List[bytes]:
        frames = []
        with self._workspace(data) as (input_path, directory):
            for index in range(count):
                # Evenly spaced, skipping the very start and end
                at = duration * (index + 1) / (count + 1) if duration > 0 else 0.0
                frame_path = directory / f"frame-{index}.png"
                self._run([
                    self.ffmpeg_path, "-v", "error", "-y",
                    "-ss", f"{at:.3f}", "-i", str(input_path),
                    "-frames:v", "1", str(frame_path),
                ])
                if frame_path.exists():
                    frames.append(frame_path.read_bytes())
        return frames

    def volume_stats(self, data: bytes) -> Tuple[float, float]:
        """Return (mean_volume, max_volume) in dB from the volumedetect filter."""
        with self._workspace(data) as (input_path, _):
            result = self._run([
                self.ffmpeg_path, "-v", "info", "-nostats",
                "-i", str(input_path),
                "-af", "volumedetect", "-vn", "-f", "null", "-",
            ])
        mean_volume = max_volume = None
        for line in (result.stderr or "").splitlines():
            if "mean_volume:" in line:
                mean_volume = float(line.split("mean_volume:")[1].split("dB")[0])
            elif "max_volume:" in line:
                max_volume = float(line.split("max_volume:")[1].split("dB")[0])
        if mean_volume is None or max_volume is None:
            raise TranscodeBackendError("volumedetect produced no statistics")
        return mean_volume, max_volume

    def transcode_video(
        self,
        data: bytes,
        *,
        width: int,
        height: int,
        video_bitrate_kbps: int,
        audio_bitrate_kbps: int,
        preserve_metadata: bool = False,
    ) -> bytes:
        with self._workspace(data) as (input_path, directory):
            output_path = directory / "output.mp4"
            self._run([
                self.ffmpeg_path, "-v", "error", "-y",
                "-i", str(input_path),
                "-vf", f"scale=w={width}:h={height}:force_original_aspect_ratio=decrease:force_divisible_by=2",
                "-c:v", "libx264", "-preset", "medium", "-profile:v", "high",
                "-b:v", f"{video_bitrate_kbps}k",
                "-maxrate", f"{video_bitrate_kbps}k",
                "-bufsize", f"{video_bitrate_kbps * 2}k",
                "-c:a", "aac", "-b:a", f"{audio_bitrate_kbps}k",
                "-map_metadata", "0" if preserve_metadata else "-1",
                "-movflags", "+faststart",
                str(output_path),
            ])
            return self._read_output(output_path)

    def extract_thumbnail(
        self, data: bytes, *, width: int, height: int, quality: int, at_seconds: float
    ) -> bytes:
        with self._workspace(data) as (input_path, directory):
            output_path = directory / "thumbnail.jpg"
            # Seeking past the end writes nothing; fall back to the first frame
            for seek in dict.fromkeys((at_seconds, 0.0)):
                self._run([
                    self.ffmpeg_path, "-v", "error", "-y",
                    "-ss", f"{seek:.3f}", "-i", str(input_path),
                    "-frames:v", "1",
                    "-vf", f"scale=w={width}:h={height}:force_original_aspect_ratio=decrease",
                    "-q:v", str(_jpeg_qscale(quality)),
                    str(output_path),
                ])
                if output_path.exists() and output_path.stat().st_size:
                    break
                logger.debug("No thumbnail frame at %.3fs", seek)
            return self._read_output(output_path)

    def transcode_audio(
        self,
        data: bytes,
        *,
        bitrate_kbps: int,
        sample_rate: int,
        preserve_metadata: bool = False,
    ) -> bytes:
        with self._workspace(data) as (input_path, directory):
            output_path = directory / "output.m4a"
            self._run([
                self.ffmpeg_path, "-v", "error", "-y",
                "-i", str(input_path),
                "-vn", "-c:a", "aac",
                "-b:a", f"{bitrate_kbps}k",
                "-ar", str(sample_rate),
                "-af", "loudnorm=I=-16:TP=-1.5:LRA=11",
                "-map_metadata", "0" if preserve_metadata else "-1",
                str(output_path),
            ])
            return self._read_output(output_path)

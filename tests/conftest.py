"""Shared fixtures: local storage, a fake ffmpeg backend and scripted transcoders."""
import json
import threading
import time
from pathlib import Path

import pytest

from optimizer.analyzer import MediaAnalyzer
from optimizer.errors import CorruptInputError, TranscodeBackendError
from optimizer.media_backend import BackendGate
from optimizer.orchestrator import OptimizationOrchestrator
from optimizer.service import ContentOptimizationService
from optimizer.storage import LocalStorageAdapter
from optimizer.strategies import build_default_catalog
from optimizer.transcoders import build_transcoders
from tests.fixtures.generate_sample import flat_image, photo_like, text_page, to_bytes


def fake_media(
    kind="video",
    width=1920,
    height=1080,
    duration=60.0,
    bitrate=None,
    frames=(),
    padding=200_000,
):
    """
    Bytes understood by FakeMediaBackend.

    The metadata is JSON; ``frames`` lists grey levels of the sampled
    frames. Padding keeps the source larger than any fake output.
    """
    meta = {
        "kind": kind,
        "width": width,
        "height": height,
        "duration": duration,
        "bitrate": bitrate,
        "frames": list(frames),
    }
    return json.dumps(meta).encode() + b" " * padding


class FakeMediaBackend:
    """Stands in for ffmpeg: output sizes grow with the requested bitrate."""

    def __init__(self, mean_volume=-20.0, max_volume=-2.0):
        self.mean_volume = mean_volume
        self.max_volume = max_volume
        self.calls = []

    def _meta(self, data):
        try:
            return json.loads(data)
        except ValueError:
            raise CorruptInputError("Invalid data found when processing input") from None

    def probe(self, data):
        self.calls.append(("probe",))
        meta = self._meta(data)
        stream = {"codec_type": meta["kind"]}
        if meta["kind"] == "video":
            stream.update(width=meta["width"], height=meta["height"])
        return {
            "streams": [stream],
            "format": {
                "duration": str(meta["duration"]),
                "bit_rate": str(meta["bitrate"]) if meta["bitrate"] else "",
            },
        }

    def sample_frames(self, data, count, duration):
        levels = self._meta(data)["frames"]
        return [to_bytes(flat_image(320, 180, (level, level, level))) for level in levels]

    def volume_stats(self, data):
        return self.mean_volume, self.max_volume

    def transcode_video(self, data, *, width, height, video_bitrate_kbps, audio_bitrate_kbps, preserve_metadata=False):
        self.calls.append(("video", width, height, video_bitrate_kbps))
        return b"v" * (video_bitrate_kbps + audio_bitrate_kbps) * 4

    def extract_thumbnail(self, data, *, width, height, quality, at_seconds):
        self.calls.append(("thumbnail", width, height, at_seconds))
        return b"t" * (width * height // 100)

    def transcode_audio(self, data, *, bitrate_kbps, sample_rate, preserve_metadata=False):
        self.calls.append(("audio", bitrate_kbps, sample_rate))
        return b"a" * bitrate_kbps * 40


class ScriptedTranscoder:
    """
    Wraps a real transcoder and counts calls.

    ``failures`` fails that many leading calls (-1 fails every call),
    ``fail_on`` fails any call whose input equals it, ``delay`` sleeps
    before encoding. ``on_failure`` runs just before a failure is raised.
    """

    def __init__(self, inner, failures=0, fail_on=None, delay=0.0, error=TranscodeBackendError, on_failure=None):
        self.inner = inner
        self.failures = failures
        self.fail_on = fail_on
        self.delay = delay
        self.error = error
        self.on_failure = on_failure
        self.calls = 0
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def encode(self, data, plan, *, preserve_metadata=False):
        with self._lock:
            self.calls += 1
            call = self.calls
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.failures == -1 or call <= self.failures or (self.fail_on is not None and data == self.fail_on):
                if self.on_failure is not None:
                    self.on_failure()
                raise self.error(f"scripted failure on call {call}")
            return self.inner.encode(data, plan, preserve_metadata=preserve_metadata)
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture(scope="session")
def text_page_png():
    return to_bytes(text_page())


@pytest.fixture(scope="session")
def flat_png():
    return to_bytes(flat_image())


@pytest.fixture(scope="session")
def photo_png():
    return to_bytes(photo_like())


@pytest.fixture
def storage(tmp_path):
    return LocalStorageAdapter(str(tmp_path / "storage"))


@pytest.fixture
def put(storage):
    """Place source bytes in storage under ``key`` and return the key."""
    def _put(key, data):
        path = Path(storage.base_path) / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return key
    return _put


@pytest.fixture
def backend():
    return FakeMediaBackend()


@pytest.fixture
def sleeps():
    """Backoff delays requested by the orchestrator (no real sleeping)."""
    return []


@pytest.fixture
def transcoders(backend):
    return build_transcoders(backend, BackendGate(2))


@pytest.fixture
def make_orchestrator(storage, backend, transcoders, sleeps):
    def _make(**overrides):
        kwargs = dict(
            catalog=build_default_catalog(),
            analyzer=MediaAnalyzer(backend),
            transcoders=transcoders,
            storage=storage,
            sleep=sleeps.append,
        )
        kwargs.update(overrides)
        return OptimizationOrchestrator(**kwargs)
    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def service(orchestrator):
    return ContentOptimizationService(orchestrator)

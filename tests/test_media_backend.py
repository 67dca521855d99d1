"""Tests for the ffmpeg backend's process handling (no ffmpeg required)."""
import subprocess
from pathlib import Path

import pytest

from optimizer import media_backend
from optimizer.errors import CorruptInputError, ServiceError, TranscodeBackendError, UnsupportedFormatError
from optimizer.media_backend import BackendGate, FFmpegBackend, _jpeg_qscale
from optimizer.transcoders import build_transcoders


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def runs(monkeypatch):
    """Replace subprocess.run; tests append the results to hand back."""
    queue = []
    commands = []

    def fake_run(cmd, **kwargs):
        commands.append(cmd)
        result = queue.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    monkeypatch.setattr(media_backend.subprocess, "run", fake_run)
    return queue, commands


def test_probe_parses_json(runs):
    queue, commands = runs
    queue.append(completed(stdout='{"streams": [{"codec_type": "video"}], "format": {}}'))

    probe = FFmpegBackend("ffmpeg", "ffprobe", 5).probe(b"data")

    assert probe["streams"][0]["codec_type"] == "video"
    assert commands[0][0] == "ffprobe"


def test_volume_stats_parsed_from_stderr(runs):
    queue, _ = runs
    queue.append(completed(stderr="[Parsed_volumedetect_0] mean_volume: -23.5 dB\n[Parsed_volumedetect_0] max_volume: -1.2 dB\n"))

    assert FFmpegBackend().volume_stats(b"data") == (-23.5, -1.2)


@pytest.mark.parametrize(
    "result, expected",
    [
        (completed(1, stderr="input: Invalid data found when processing input"), CorruptInputError),
        (completed(1, stderr="Output file #0 does not contain any stream"), UnsupportedFormatError),
        (completed(137, stderr="Killed"), TranscodeBackendError),
        (FileNotFoundError("ffmpeg"), TranscodeBackendError),
        (subprocess.TimeoutExpired("ffmpeg", 5), TranscodeBackendError),
    ],
)
def test_process_failures_are_classified(runs, result, expected):
    queue, _ = runs
    queue.append(result)
    with pytest.raises(expected):
        FFmpegBackend().transcode_audio(b"data", bitrate_kbps=128, sample_rate=44100)


def test_video_command_strips_metadata_by_default(runs):
    queue, commands = runs
    queue.append(completed(1, stderr="boom"))
    with pytest.raises(TranscodeBackendError):
        FFmpegBackend().transcode_video(
            b"data", width=1280, height=720, video_bitrate_kbps=3000, audio_bitrate_kbps=128
        )

    cmd = commands[0]
    assert cmd[cmd.index("-b:v") + 1] == "3000k"
    assert cmd[cmd.index("-map_metadata") + 1] == "-1"


def test_jpeg_quality_maps_to_qscale():
    assert _jpeg_qscale(100) == 2
    assert _jpeg_qscale(0) == 31
    assert _jpeg_qscale(85) < _jpeg_qscale(70)


def test_backend_gate_has_at_least_one_slot():
    gate = BackendGate(0)
    assert gate.slots >= 1
    with gate.slot():
        pass


def test_thumbnail_falls_back_to_first_frame(monkeypatch):
    seeks = []

    def fake_run(cmd, **kwargs):
        seek = cmd[cmd.index("-ss") + 1]
        seeks.append(seek)
        if seek == "0.000":
            Path(cmd[-1]).write_bytes(b"jpeg")
        return completed()

    monkeypatch.setattr(media_backend.subprocess, "run", fake_run)

    thumbnail = FFmpegBackend().extract_thumbnail(b"data", width=640, height=360, quality=80, at_seconds=1.0)

    assert thumbnail == b"jpeg"
    assert seeks == ["1.000", "0.000"]


@pytest.mark.parametrize(
    "encode",
    [
        lambda backend: backend.extract_thumbnail(b"data", width=640, height=360, quality=80, at_seconds=1.0),
        lambda backend: backend.transcode_video(
            b"data", width=1280, height=720, video_bitrate_kbps=3000, audio_bitrate_kbps=128
        ),
        lambda backend: backend.transcode_audio(b"data", bitrate_kbps=128, sample_rate=44100),
    ],
    ids=["thumbnail", "video", "audio"],
)
def test_missing_output_is_a_backend_error(monkeypatch, encode):
    # ffmpeg can print "Output file is empty" and still exit 0
    monkeypatch.setattr(media_backend.subprocess, "run", lambda cmd, **kwargs: completed())

    with pytest.raises(TranscodeBackendError, match="wrote no"):
        encode(FFmpegBackend())


async def test_short_clip_without_thumbnail_fails_as_service_error(monkeypatch, make_orchestrator, put):
    monkeypatch.setattr(media_backend.subprocess, "run", lambda cmd, **kwargs: completed())
    put("short.mp4", b"\x00\x00\x00\x18ftypmp42")
    orchestrator = make_orchestrator(transcoders=build_transcoders(FFmpegBackend(), BackendGate(1)))

    with pytest.raises(ServiceError) as excinfo:
        await orchestrator.optimize_content("short.mp4", "VIDEO", {"strategy": "balanced"})

    assert isinstance(excinfo.value.cause, TranscodeBackendError)

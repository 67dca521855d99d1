"""Tests for content analysis and strategy recommendation."""
import pytest

from optimizer.analyzer import MediaAnalyzer
from optimizer.errors import AnalysisError, UnsupportedFormatError
from optimizer.schemas import ContentType, Dimensions
from tests.conftest import FakeMediaBackend, fake_media
from tests.fixtures.generate_sample import flat_image, pattern_image, to_bytes


@pytest.fixture
def analyzer(backend):
    return MediaAnalyzer(backend)


def test_text_page_recommends_quality(analyzer, text_page_png):
    analysis = analyzer.analyze(text_page_png, ContentType.IMAGE)

    assert analysis.dimensions == Dimensions(width=1920, height=1080)
    assert analysis.has_text is True
    assert analysis.complexity == "high"
    assert analysis.color_complexity == "monochrome"
    assert analysis.recommended_strategy == "quality"


def test_flat_image_recommends_aggressive(analyzer, flat_png):
    analysis = analyzer.analyze(flat_png, ContentType.IMAGE)

    assert analysis.complexity == "low"
    assert analysis.color_complexity == "limited"
    assert analysis.noise_level == "clean"
    assert analysis.has_text is False
    assert analysis.has_faces is False
    assert analysis.dominant_colors == ["#2878c8"]
    assert analysis.recommended_strategy == "aggressive"


def test_grey_image_is_monochrome(analyzer):
    data = to_bytes(flat_image(color=(128, 128, 128)))
    assert analyzer.analyze(data, ContentType.IMAGE).color_complexity == "monochrome"


def test_small_image_is_analyzed(analyzer):
    analysis = analyzer.analyze(to_bytes(pattern_image(), "JPEG", quality=85), ContentType.IMAGE)
    assert analysis.dimensions == Dimensions(width=100, height=100)
    assert len(analysis.dominant_colors) <= 5


def test_analysis_is_idempotent(analyzer, text_page_png, photo_png):
    for data in (text_page_png, photo_png):
        first = analyzer.analyze(data, ContentType.IMAGE)
        second = analyzer.analyze(data, ContentType.IMAGE)
        assert first == second, "Same bytes must give the same analysis"


@pytest.mark.parametrize("data", [b"", b"not an image at all"])
def test_unreadable_image_raises_analysis_error(analyzer, data):
    with pytest.raises(AnalysisError):
        analyzer.analyze(data, ContentType.IMAGE)


def test_static_video_recommends_aggressive(analyzer):
    analysis = analyzer.analyze(fake_media(frames=[10, 10, 10]), ContentType.VIDEO)

    assert analysis.dimensions == Dimensions(width=1920, height=1080)
    assert analysis.duration == 60.0
    assert analysis.motion_level == "static"
    assert analysis.complexity == "low"
    assert analysis.recommended_strategy == "aggressive"


def test_video_motion_from_frame_differences(analyzer):
    analysis = analyzer.analyze(fake_media(frames=[0, 60, 120, 180]), ContentType.VIDEO)
    assert analysis.motion_level == "high"


def test_long_video_recommends_streaming(analyzer):
    analysis = analyzer.analyze(fake_media(duration=600.0), ContentType.VIDEO)
    assert analysis.complexity == "medium"
    assert analysis.recommended_strategy == "streaming"


def test_small_video_recommends_mobile(analyzer):
    analysis = analyzer.analyze(fake_media(width=640, height=360), ContentType.VIDEO)
    assert analysis.recommended_strategy == "mobile"


def test_video_bitrate_derived_from_size(analyzer):
    data = fake_media(duration=10.0)
    analysis = analyzer.analyze(data, ContentType.VIDEO)
    assert analysis.bitrate == int(len(data) * 8 / 10.0)


def test_low_bitrate_audio_recommends_mobile(analyzer):
    analysis = analyzer.analyze(fake_media(kind="audio", bitrate=64000), ContentType.AUDIO)

    assert analysis.dimensions == Dimensions()
    assert analysis.dynamic_range == "moderate"
    assert analysis.complexity == "medium"
    assert analysis.recommended_strategy == "mobile"


def test_wide_dynamic_range_audio():
    analyzer = MediaAnalyzer(FakeMediaBackend(mean_volume=-30.0, max_volume=-2.0))
    analysis = analyzer.analyze(fake_media(kind="audio", bitrate=256000), ContentType.AUDIO)

    assert analysis.dynamic_range == "wide"
    assert analysis.complexity == "high"
    assert analysis.recommended_strategy == "balanced"


def test_compressed_audio_recommends_aggressive():
    analyzer = MediaAnalyzer(FakeMediaBackend(mean_volume=-8.0, max_volume=-4.0))
    analysis = analyzer.analyze(fake_media(kind="audio", bitrate=256000), ContentType.AUDIO)

    assert analysis.dynamic_range == "compressed"
    assert analysis.recommended_strategy == "aggressive"


def test_video_without_backend_is_unsupported():
    with pytest.raises(UnsupportedFormatError):
        MediaAnalyzer().analyze(fake_media(), ContentType.VIDEO)


@pytest.mark.parametrize("data", [b"", b"\x00\x01garbage"])
def test_corrupt_video_raises_analysis_error(analyzer, data):
    with pytest.raises(AnalysisError):
        analyzer.analyze(data, ContentType.VIDEO)


def test_video_without_video_stream(analyzer):
    with pytest.raises(AnalysisError, match="No video stream"):
        analyzer.analyze(fake_media(kind="audio"), ContentType.VIDEO)


@pytest.mark.parametrize(
    "fields, content_type, expected",
    [
        ({"complexity": "low"}, ContentType.IMAGE, "aggressive"),
        ({"complexity": "low", "has_text": True}, ContentType.IMAGE, "quality"),
        ({"complexity": "medium", "has_faces": True}, ContentType.IMAGE, "quality"),
        ({"complexity": "high", "dimensions": Dimensions(width=640, height=480)}, ContentType.IMAGE, "mobile"),
        ({"complexity": "medium", "motion_level": "high"}, ContentType.VIDEO, "streaming"),
        ({"complexity": "medium", "bitrate": 96000}, ContentType.AUDIO, "mobile"),
        ({"complexity": "medium"}, ContentType.IMAGE, "balanced"),
    ],
)
def test_recommendation_rules(analyzer, fields, content_type, expected):
    analysis = {"dimensions": Dimensions(width=1920, height=1080)}
    if content_type == ContentType.AUDIO:
        analysis["dimensions"] = Dimensions()
    analysis.update(fields)
    assert analyzer.recommend_strategy(analysis, content_type) == expected

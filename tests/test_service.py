"""Tests for the engine boundary and its convenience operations."""
from io import BytesIO
from pathlib import Path

from PIL import Image

from optimizer.service import build_service
from tests.conftest import FakeMediaBackend, fake_media


def test_list_strategies(service):
    strategies = service.list_strategies()
    assert [s.key for s in strategies] == ["auto", "aggressive", "balanced", "quality", "mobile", "streaming"]
    assert strategies[0].model_dump(by_alias=True) == {
        "key": "auto",
        "name": "Auto (Recommended)",
        "description": "Strategy chosen from content analysis",
    }


async def test_optimize_for_mobile(service, storage, put, photo_png):
    put("photo.png", photo_png)
    result = await service.optimize_for_mobile("photo.png", "IMAGE")

    assert result.strategy == "mobile"
    (primary,) = result.outputs
    decoded = Image.open(BytesIO((Path(storage.base_path) / primary.url).read_bytes()))
    assert max(decoded.size) <= 1080


async def test_optimize_for_size_and_quality(service, put, photo_png):
    put("photo.png", photo_png)

    small = await service.optimize_for_size("photo.png", "IMAGE")
    best = await service.optimize_for_quality("photo.png", "IMAGE")

    assert (small.strategy, best.strategy) == ("aggressive", "quality")
    assert small.size_reduction >= best.size_reduction
    assert small.quality_score < best.quality_score


async def test_optimize_for_streaming(service, put):
    put("clip.mp4", fake_media())
    result = await service.optimize_for_streaming("clip.mp4", "VIDEO")

    assert result.strategy == "streaming"
    assert [o.quality for o in result.outputs] == ["1080p", "720p", "480p", "thumbnail"]


async def test_results_serialize_with_camel_case(service, put, flat_png):
    put("flat.png", flat_png)
    payload = (await service.optimize_content("flat.png", "IMAGE", {"strategy": "balanced"})).model_dump(by_alias=True)

    assert {"originalSize", "optimizedSize", "sizeReduction", "qualityScore", "processingTime"} <= set(payload)

    analysis = (await service.analyze_content("flat.png", "IMAGE")).model_dump(by_alias=True)
    assert analysis["recommendedStrategy"] == "aggressive"
    assert "colorComplexity" in analysis


async def test_batch_through_service(service, put, flat_png):
    keys = [put(f"flat-{i}.png", flat_png) for i in range(2)]
    batch = await service.batch_optimize(
        [{"ref": key, "contentType": "IMAGE"} for key in keys], strategy="balanced"
    )
    assert batch.summary.successful_optimizations == 2
    assert batch.summary.model_dump(by_alias=True)["totalFiles"] == 2


async def test_build_service_wires_collaborators(storage, put):
    service = build_service(storage=storage, backend=FakeMediaBackend(), sleep=lambda seconds: None)
    put("track.wav", fake_media(kind="audio", bitrate=256000))

    result = await service.optimize_content("track.wav", "AUDIO", {"strategy": "quality"})

    assert result.outputs[0].quality == "320k"
    assert service.orchestrator.storage is storage

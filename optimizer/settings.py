"""Engine settings using Pydantic BaseSettings."""
from pydantic_settings import BaseSettings
from typing import Dict, Tuple
import os


class Settings(BaseSettings):
    """Engine configuration."""

    # Storage
    # Local development adapter writes optimized outputs under this path
    STORAGE_BASE_PATH: str = "./storage"
    OUTPUT_PREFIX: str = "optimized"

    # Batch limits
    MAX_BATCH_SIZE: int = 100
    DEFAULT_MAX_CONCURRENT: int = 3
    MAX_CONCURRENT_CAP: int = 8

    # Retry policy (attempts include the first try)
    RETRY_MAX_ATTEMPTS: int = 3
    STORAGE_RETRY_MAX_ATTEMPTS: int = 2
    TIMEOUT_RETRY_MAX_ATTEMPTS: int = 2
    RETRY_BASE_DELAY_MS: int = 200

    # Per-task timeout around analyze + resolve + encode
    TASK_TIMEOUT_SECONDS: float = 300.0

    # Transcoding backend access slots (independent of batch concurrency)
    BACKEND_SLOTS: int = os.cpu_count() or 2

    # ffmpeg / ffprobe
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    FFMPEG_TIMEOUT_SECONDS: float = 600.0
    VIDEO_SAMPLE_FRAMES: int = 4

    # Image analysis thresholds
    ANALYSIS_TILE_SIZE: int = 256
    ANALYSIS_TILE_GRID: int = 3
    ANALYSIS_THUMBNAIL_SIZE: int = 256
    EDGE_PIXEL_THRESHOLD: int = 48
    EDGE_DENSITY_LOW: float = 0.02
    EDGE_DENSITY_HIGH: float = 0.10
    LUMA_STDDEV_LOW: float = 20.0
    TEXT_EDGE_DENSITY: float = 0.08
    TEXT_EXTREME_FRACTION: float = 0.6
    TEXT_MIN_STDDEV: float = 40.0
    NOISE_MODERATE: float = 2.0
    NOISE_HEAVY: float = 6.0
    LIMITED_PALETTE_COLORS: int = 256
    SKIN_FRACTION_MIN: float = 0.08
    SKIN_FRACTION_MAX: float = 0.6
    MAX_DOMINANT_COLORS: int = 5

    # Motion thresholds (mean absolute frame difference)
    MOTION_LOW: float = 2.0
    MOTION_MEDIUM: float = 8.0
    MOTION_HIGH: float = 20.0

    # Audio dynamic range thresholds (max - mean volume, dB)
    DYNAMIC_RANGE_MODERATE: float = 10.0
    DYNAMIC_RANGE_WIDE: float = 20.0

    # Recommendation thresholds
    SMALL_VISUAL_WIDTH: int = 800
    SMALL_VISUAL_HEIGHT: int = 600
    LONG_DURATION_SECONDS: float = 300.0
    LOW_AUDIO_BITRATE: int = 96_000

    # Image output: longest side before strategy scaling
    IMAGE_BASE_MAX_DIMENSION: int = 2048
    IMAGE_MOBILE_MAX_DIMENSION: int = 1080
    IMAGE_TV_MAX_DIMENSION: int = 3840

    # Video ladder: name -> (width, height, video kbps, audio kbps)
    VIDEO_LADDER: Dict[str, Tuple[int, int, int, int]] = {
        "2160p": (3840, 2160, 14000, 192),
        "1080p": (1920, 1080, 5000, 192),
        "720p": (1280, 720, 3000, 128),
        "480p": (854, 480, 1500, 128),
        "360p": (640, 360, 800, 96),
    }
    VIDEO_MAX_RUNGS: int = 3

    # Thumbnail (width, height)
    THUMBNAIL_SIZE: Tuple[int, int] = (1280, 720)
    MOBILE_THUMBNAIL_SIZE: Tuple[int, int] = (640, 360)
    # Seek position for the thumbnail frame; halved for shorter clips
    THUMBNAIL_SEEK_SECONDS: float = 1.0

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

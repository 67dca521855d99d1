"""Pydantic schemas for engine inputs, plans and results."""
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ContentType(str, Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"


class StrategyKey(str, Enum):
    AUTO = "auto"
    AGGRESSIVE = "aggressive"
    BALANCED = "balanced"
    QUALITY = "quality"
    MOBILE = "mobile"
    STREAMING = "streaming"


class TargetDevice(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    TV = "tv"


class TargetConnection(str, Enum):
    TWO_G = "2g"
    THREE_G = "3g"
    FOUR_G = "4g"
    FIVE_G = "5g"
    WIFI = "wifi"


Complexity = Literal["low", "medium", "high"]
ColorComplexity = Literal["monochrome", "limited", "full"]
NoiseLevel = Literal["clean", "moderate", "heavy"]
MotionLevel = Literal["static", "low", "medium", "high"]
DynamicRange = Literal["compressed", "moderate", "wide"]
TargetKind = Literal["image", "video", "thumbnail", "audio"]


class CamelModel(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Dimensions(CamelModel):
    width: int = 0
    height: int = 0


class ContentAnalysis(CamelModel):
    """Result of inspecting one media file."""
    dimensions: Dimensions
    complexity: Complexity
    color_complexity: ColorComplexity
    noise_level: NoiseLevel
    has_text: bool = False
    has_faces: bool = False
    dominant_colors: List[str] = Field(default_factory=list, max_length=5)
    duration: Optional[float] = None  # seconds
    bitrate: Optional[int] = None  # bits per second
    motion_level: Optional[MotionLevel] = None
    dynamic_range: Optional[DynamicRange] = None
    recommended_strategy: str


class StrategyDefinition(CamelModel):
    """Named size/quality policy."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    key: str
    name: str
    description: str
    target_size_reduction: int = Field(ge=0, le=100)  # percentage
    quality_threshold: int = Field(ge=0, le=100)


class StrategyInfo(CamelModel):
    """Listing entry for presentation layers."""
    key: str
    name: str
    description: str


class OptimizationOptions(CamelModel):
    """Per-call options; unknown keys and enum values are rejected."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    strategy: Optional[StrategyKey] = None
    target_device: Optional[TargetDevice] = None
    target_connection: Optional[TargetConnection] = None
    preserve_metadata: bool = False
    enable_analytics: bool = False
    content_id: Optional[str] = None
    artist_id: Optional[str] = None


class OutputTarget(CamelModel):
    """One output the transcoder must produce."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    kind: TargetKind
    label: str
    format: str
    quality: Optional[int] = Field(default=None, ge=0, le=100)
    max_dimension: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    video_bitrate_kbps: Optional[int] = None
    audio_bitrate_kbps: Optional[int] = None
    sample_rate: Optional[int] = None
    seek_seconds: Optional[float] = Field(default=None, ge=0)  # thumbnail frame position


class ResolvedPlan(CamelModel):
    """Concrete strategy plus per-output targets for one file."""
    strategy_key: str
    content_type: ContentType
    definition: StrategyDefinition
    quality_threshold: int = Field(ge=0, le=100)  # after device/connection bias
    targets: List[OutputTarget]


class Output(CamelModel):
    """One encoded variant written to storage."""
    quality: str
    format: str
    size: int = Field(gt=0)
    url: str
    optimizations: List[str] = Field(default_factory=list)


class OptimizationResult(CamelModel):
    original_size: int
    optimized_size: int
    size_reduction: float  # percentage
    quality_score: float = Field(ge=0, le=100)
    processing_time: int  # milliseconds
    strategy: str
    outputs: List[Output]


class BatchTask(CamelModel):
    ref: str
    content_type: ContentType
    options: OptimizationOptions = Field(default_factory=OptimizationOptions)


class BatchFailure(CamelModel):
    ref: str
    error: str
    error_type: str


class BatchSummary(CamelModel):
    total_files: int
    successful_optimizations: int
    failed_optimizations: int
    total_size_reduction: float  # average percentage
    average_quality_score: float
    total_processing_time: int  # milliseconds, summed


class BatchResult(CamelModel):
    results: List[OptimizationResult]
    failures: List[BatchFailure]
    summary: BatchSummary

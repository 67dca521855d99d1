"""Strategy catalog: the fixed set of named optimization policies."""
from types import MappingProxyType
from typing import Iterator, List, Mapping

from optimizer.errors import UnknownStrategyError
from optimizer.schemas import StrategyDefinition, StrategyInfo, StrategyKey

AUTO = StrategyKey.AUTO.value


class StrategyCatalog:
    """
    Read-only registry of strategy definitions.

    Built once and passed to resolvers and orchestrators. Safe for
    concurrent reads: nothing mutates it after construction.
    """

    def __init__(self, definitions: Mapping[str, StrategyDefinition]):
        expected = {key.value for key in StrategyKey}
        if set(definitions) != expected:
            raise ValueError(f"Catalog must define exactly {sorted(expected)}")
        self._definitions = MappingProxyType(dict(definitions))

    def __contains__(self, key: object) -> bool:
        return key in self._definitions

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def lookup(self, key: str) -> StrategyDefinition:
        """
        Get a concrete strategy definition.

        "auto" is resolved from content analysis and is never looked up
        directly, so it is rejected here along with unknown keys.

        Raises:
            UnknownStrategyError: If key is "auto" or not in the catalog
        """
        if key == AUTO:
            raise UnknownStrategyError("Strategy 'auto' must be resolved from content analysis")
        try:
            return self._definitions[key]
        except KeyError:
            raise UnknownStrategyError(f"Unknown strategy: {key}") from None

    def list(self) -> List[StrategyInfo]:
        """List every strategy (including auto) for presentation."""
        return [
            StrategyInfo(key=d.key, name=d.name, description=d.description)
            for d in self._definitions.values()
        ]


def build_default_catalog() -> StrategyCatalog:
    """Build the standard six-strategy catalog."""
    definitions = [
        StrategyDefinition(
            key="auto",
            name="Auto (Recommended)",
            description="Strategy chosen from content analysis",
            target_size_reduction=40,
            quality_threshold=85,
        ),
        StrategyDefinition(
            key="aggressive",
            name="Aggressive Compression",
            description="Maximum file size reduction with acceptable quality loss",
            target_size_reduction=60,
            quality_threshold=70,
        ),
        StrategyDefinition(
            key="balanced",
            name="Balanced Optimization",
            description="Good balance between file size and quality",
            target_size_reduction=40,
            quality_threshold=85,
        ),
        StrategyDefinition(
            key="quality",
            name="Quality Preserving",
            description="Minimal compression to preserve maximum quality",
            target_size_reduction=20,
            quality_threshold=95,
        ),
        StrategyDefinition(
            key="mobile",
            name="Mobile Optimized",
            description="Optimized for mobile devices and slower connections",
            target_size_reduction=70,
            quality_threshold=75,
        ),
        StrategyDefinition(
            key="streaming",
            name="Streaming Optimized",
            description="Optimized for adaptive streaming and quick start",
            target_size_reduction=45,
            quality_threshold=80,
        ),
    ]
    return StrategyCatalog({d.key: d for d in definitions})

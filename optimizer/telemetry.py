"""Telemetry collaborator for optional per-optimization analytics events."""
import logging
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    def record(self, event: Dict[str, Any]) -> None: ...


class LoggingTelemetrySink:
    """Default sink: writes events to the engine log."""

    def record(self, event: Dict[str, Any]) -> None:
        logger.info("optimization event %s", event)


class MemoryTelemetrySink:
    """Keeps events in memory; handy for embedding applications and tests."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def record(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

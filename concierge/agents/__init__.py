# agents/__init__.py
"""
Orchestration Package

- ConciergeOrchestrator: runs one conversational turn end to end
- TelemetryAggregator: per-app chat metrics
- workers/: search, availability, preferences and recommendations
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .orchestrator import ConciergeOrchestrator, TurnResult, TurnCancelled, PRIMARY_WORKER
    from .telemetry import TelemetryAggregator

__all__ = [
    "ConciergeOrchestrator",
    "TurnResult",
    "TurnCancelled",
    "PRIMARY_WORKER",
    "TelemetryAggregator",
]

# agents/telemetry.py
"""
Chat telemetry aggregator.

One instance per application, injected into the orchestrator and read by
the metrics endpoint. Latencies are kept in a bounded window.
"""

import math
import threading
import time
from collections import Counter, deque
from typing import Any, Callable, Deque, Dict, Optional

from loguru import logger


LATENCY_WINDOW = 1000


def _percentile(values, pct: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = max(0, math.ceil(pct / 100 * len(ordered)) - 1)
    return float(ordered[index])


class TelemetryAggregator:
    """Counts turns, intents, fallbacks and errors; tracks latency percentiles"""

    def __init__(self, window: int = LATENCY_WINDOW, clock: Callable[[], float] = time.time):
        self._lock = threading.Lock()
        self._clock = clock
        self._window = window
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.started_at = self._clock()
            self.total_turns = 0
            self.fallback_turns = 0
            self.total_errors = 0
            self.intents: Counter = Counter()
            self.errors: Counter = Counter()
            self.latencies: Deque[float] = deque(maxlen=self._window)

    def record_chat_event(
        self,
        intent: Optional[str],
        latency_ms: float,
        fallback_used: bool = True,
        recommendation_count: int = 0,
    ) -> None:
        with self._lock:
            self.total_turns += 1
            if intent:
                self.intents[intent] += 1
            if fallback_used:
                self.fallback_turns += 1
            self.latencies.append(latency_ms)
        logger.debug(f"chat turn: intent={intent} latency={latency_ms:.1f}ms recs={recommendation_count}")

    def record_chat_error(self, code: str, latency_ms: Optional[float] = None) -> None:
        with self._lock:
            self.total_errors += 1
            self.errors[code] += 1
            if latency_ms is not None:
                self.latencies.append(latency_ms)

    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time copy of all counters"""
        with self._lock:
            latencies = list(self.latencies)
            attempts = self.total_turns + self.total_errors
            return {
                "totalTurns": self.total_turns,
                "totalErrors": self.total_errors,
                "intentDistribution": dict(self.intents),
                "errorsByCode": dict(self.errors),
                "fallbackRate": round(self.fallback_turns / self.total_turns, 4) if self.total_turns else 0.0,
                "errorRate": round(self.total_errors / attempts, 4) if attempts else 0.0,
                "avgLatencyMs": round(sum(latencies) / len(latencies), 2) if latencies else 0.0,
                "p95LatencyMs": round(_percentile(latencies, 95), 2),
                "uptimeSeconds": round(self._clock() - self.started_at, 1),
            }

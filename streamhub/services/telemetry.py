from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)
_gauges: dict[str, float] = {}


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Bounded ring of samples feeding the ops metrics summary.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    # Dotted names carry the label, e.g. webhook_rejected_total.bunny_stream.
    _counters[name] += value


def set_gauge(name: str, value: float) -> None:
    _gauges[name] = value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def external_call_summary(window_s: int) -> dict[str, dict[str, Any]]:
    # Per-integration call count, error rate and worst latency inside the window.
    cutoff = time.time() - window_s
    summary: dict[str, dict[str, Any]] = {}
    for sample in _external_samples:
        if sample.ts < cutoff:
            continue
        entry = summary.setdefault(
            sample.integration, {"calls": 0, "failures": 0, "max_latency_ms": 0.0}
        )
        entry["calls"] += 1
        if not sample.success:
            entry["failures"] += 1
        entry["max_latency_ms"] = max(entry["max_latency_ms"], sample.latency_ms)
    for entry in summary.values():
        entry["error_rate"] = entry["failures"] / entry["calls"]
    return summary


def snapshot() -> dict[str, Any]:
    # Payload of GET /v1/ops/metrics.
    return {
        "counters": counters_snapshot(),
        "gauges": dict(_gauges),
        "external_calls": external_call_summary(3600),
    }


def reset_telemetry() -> None:
    # Process-local state; tests reset it between cases.
    _external_samples.clear()
    _counters.clear()
    _gauges.clear()

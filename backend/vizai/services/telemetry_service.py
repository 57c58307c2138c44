"""
Telemetry: per-run step accounting and health aggregation.

TelemetryCollector is an in-memory accumulator for one pipeline
invocation. ``flush`` writes one append-only telemetry row (events plus a
summary) and clears the accumulator. Nothing here feeds back into control
flow.

TelemetryService is the pull side: it reads flushed summaries for a time
window and computes the health figures an external alerting process
compares against thresholds. It never alerts by itself.
"""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..database import utcnow
from ..models import TelemetryRecord
from ..repositories import TelemetryRepository

logger = logging.getLogger(__name__)


class TelemetryCollector:
    def __init__(self, project_id: str, clock: Callable[[], datetime] = utcnow):
        self.project_id = project_id
        self._clock = clock
        self._events: List[Dict[str, Any]] = []
        self._open: Dict[str, datetime] = {}
        self._steps: Dict[str, Dict[str, Any]] = {}
        self._errors = 0

    @property
    def events(self) -> List[Dict[str, Any]]:
        return list(self._events)

    @property
    def is_empty(self) -> bool:
        return not self._events

    def start_step(self, name: str) -> None:
        now = self._clock()
        self._open[name] = now
        self._events.append({"type": "start", "step": name, "at": now.isoformat()})

    def end_step(
        self,
        name: str,
        success: bool,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost_usd: float = 0.0,
        retries: int = 0,
    ) -> None:
        now = self._clock()
        started = self._open.pop(name, now)
        duration_ms = int((now - started).total_seconds() * 1000)
        self._events.append({
            "type": "end",
            "step": name,
            "at": now.isoformat(),
            "success": success,
            "duration_ms": duration_ms,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost_usd": cost_usd,
            "retries": retries,
        })
        step = self._steps.setdefault(
            name, {"success": success, "duration_ms": 0, "input_tokens": 0, "output_tokens": 0,
                   "cost_usd": 0.0, "retries": 0}
        )
        step["success"] = success
        step["duration_ms"] += duration_ms
        step["input_tokens"] += input_tokens
        step["output_tokens"] += output_tokens
        step["cost_usd"] += cost_usd
        step["retries"] += retries

    def record_error(self, name: str, error: Any, kind: str = "") -> None:
        self._errors += 1
        self._events.append({
            "type": "error",
            "step": name,
            "at": self._clock().isoformat(),
            "kind": kind,
            "message": str(error)[:500],
        })

    def summary(self) -> Dict[str, Any]:
        steps = {name: dict(values) for name, values in self._steps.items()}
        return {
            "total_duration_ms": sum(s["duration_ms"] for s in steps.values()),
            "total_input_tokens": sum(s["input_tokens"] for s in steps.values()),
            "total_output_tokens": sum(s["output_tokens"] for s in steps.values()),
            "total_cost_usd": round(sum(s["cost_usd"] for s in steps.values()), 6),
            "steps": steps,
            "error_count": self._errors,
            "success": bool(steps) and all(s["success"] for s in steps.values()),
        }

    def flush(self, db: Session) -> Optional[TelemetryRecord]:
        """Persist the run summary and reset. Returns None when nothing was recorded."""
        if self.is_empty:
            return None
        record = TelemetryRecord(
            project_id=self.project_id,
            events=self.events,
            summary=self.summary(),
            recorded_at=self._clock(),
        )
        TelemetryRepository(db).add(record)
        self._events.clear()
        self._open.clear()
        self._steps.clear()
        self._errors = 0
        return record


def percentile(values: List[float], pct: float) -> float:
    """Nearest-rank percentile. 0.0 for an empty list."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


class TelemetryService:
    """Read side of telemetry: summaries and health figures for a window."""

    def __init__(self, db: Session):
        self.repo = TelemetryRepository(db)

    def summaries(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        project_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        until = until or utcnow()
        return [
            {
                "id": r.id,
                "project_id": r.project_id,
                "recorded_at": r.recorded_at,
                "summary": r.summary or {},
            }
            for r in self.repo.list_between(since, until, project_id)
        ]

    def health_report(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        min_success_rate: float = 0.95,
        max_avg_duration_seconds: float = 120.0,
    ) -> Dict[str, Any]:
        until = until or utcnow()
        summaries = [s["summary"] for s in self.summaries(since, until)]
        runs = len(summaries)
        durations = [s.get("total_duration_ms", 0) / 1000 for s in summaries]
        successes = sum(1 for s in summaries if s.get("success"))

        success_rate = successes / runs if runs else 1.0
        avg_duration = sum(durations) / runs if runs else 0.0

        breached = []
        if runs and success_rate < min_success_rate:
            breached.append("success_rate")
        if runs and avg_duration > max_avg_duration_seconds:
            breached.append("avg_duration")

        return {
            "window_start": since,
            "window_end": until,
            "runs": runs,
            "success_rate": round(success_rate, 4),
            "avg_duration_seconds": round(avg_duration, 3),
            "p50_duration_seconds": round(percentile(durations, 50), 3),
            "p95_duration_seconds": round(percentile(durations, 95), 3),
            "total_input_tokens": sum(s.get("total_input_tokens", 0) for s in summaries),
            "total_output_tokens": sum(s.get("total_output_tokens", 0) for s in summaries),
            "total_cost_usd": round(sum(s.get("total_cost_usd", 0.0) for s in summaries), 6),
            "error_count": sum(s.get("error_count", 0) for s in summaries),
            "thresholds": {
                "min_success_rate": min_success_rate,
                "max_avg_duration_seconds": max_avg_duration_seconds,
            },
            "breached": breached,
            "healthy": not breached,
        }

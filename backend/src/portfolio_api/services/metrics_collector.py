from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..db.database import utcnow


@dataclass
class MetricPoint:
    timestamp: datetime
    values: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp.isoformat(), "values": dict(self.values)}


class MetricsCollector:
    """Per-service metric points kept for a sliding wall-clock window."""

    def __init__(self, retention_seconds: int = 3600) -> None:
        self.retention = timedelta(seconds=retention_seconds)
        self._metrics: Dict[str, List[MetricPoint]] = {}
        self._lock = threading.RLock()

    def collect(self, service: str, values: Dict[str, float], now: Optional[datetime] = None) -> MetricPoint:
        now = now or utcnow()
        point = MetricPoint(timestamp=now, values=dict(values))
        cutoff = now - self.retention
        with self._lock:
            points = [p for p in self._metrics.get(service, []) if p.timestamp >= cutoff]
            points.append(point)
            self._metrics[service] = points
        return point

    def get_metrics(
        self,
        service: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MetricPoint]:
        with self._lock:
            points = list(self._metrics.get(service, []))
        return [
            p
            for p in points
            if (start is None or p.timestamp >= start) and (end is None or p.timestamp <= end)
        ]

    def get_latest(self, service: str) -> Optional[MetricPoint]:
        with self._lock:
            points = self._metrics.get(service)
            return points[-1] if points else None

    def services(self) -> List[str]:
        with self._lock:
            return sorted(self._metrics)

    def clear(self, service: Optional[str] = None) -> None:
        with self._lock:
            if service is None:
                self._metrics.clear()
            else:
                self._metrics.pop(service, None)

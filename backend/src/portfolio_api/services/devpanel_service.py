from __future__ import annotations

import logging
import os
import platform
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import psutil

from ..db.database import utcnow
from ..logging_config import ServiceLogBuffer
from .metrics_collector import MetricsCollector
from .service_manager import ServiceManager

logger = logging.getLogger(__name__)

SYSTEM_SERVICE = "system"

HISTORY_WINDOWS = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}


def format_uptime(seconds: float) -> str:
    total_minutes = int(seconds // 60)
    days, rem = divmod(total_minutes, 60 * 24)
    hours, minutes = divmod(rem, 60)
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class DevpanelService:
    """System and managed-service stats for the admin devpanel."""

    def __init__(
        self,
        manager: ServiceManager,
        collector: MetricsCollector,
        log_buffer: ServiceLogBuffer,
    ) -> None:
        self.manager = manager
        self.collector = collector
        self.log_buffer = log_buffer
        self._process = psutil.Process(os.getpid())

    def collect_system_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "python_version": platform.python_version(),
            "platform": platform.platform(),
            "thread_count": threading.active_count(),
            "cpu_usage": 0.0,
            "memory_usage": 0.0,
            "disk_usage": 0.0,
            "uptime": None,
            "last_update": utcnow().isoformat(),
        }
        try:
            stats["cpu_usage"] = psutil.cpu_percent(interval=None)
            stats["memory_usage"] = psutil.virtual_memory().percent
            stats["disk_usage"] = psutil.disk_usage("/").percent
            stats["uptime"] = format_uptime(time.time() - psutil.boot_time())
        except (psutil.Error, OSError) as exc:
            logger.warning("Could not read system stats: %s", exc)
        return stats

    def _process_usage(self) -> Dict[str, float]:
        try:
            with self._process.oneshot():
                return {
                    "cpu_usage": self._process.cpu_percent(interval=None),
                    "memory_usage": round(self._process.memory_percent(), 3),
                }
        except (psutil.Error, OSError) as exc:
            logger.warning("Could not read process stats: %s", exc)
            return {"cpu_usage": 0.0, "memory_usage": 0.0}

    def collect_service_stats(self, name: str) -> Dict[str, Any]:
        status = self.manager.get_status(name)
        stats: Dict[str, Any] = {
            "name": name,
            "status": "running" if status["running"] else "stopped",
            "uptime": format_uptime(status["uptime_seconds"]),
            "uptime_seconds": status["uptime_seconds"],
            "error_count": len(status["errors"]),
            "last_error": status["errors"][-1] if status["errors"] else None,
            "cpu_usage": 0.0,
            "memory_usage": 0.0,
            "last_update": utcnow().isoformat(),
        }
        # Managed services run inside the API process.
        if status["running"]:
            stats.update(self._process_usage())
        for key in ("interval_seconds", "runs"):
            if key in status:
                stats[key] = status[key]
        return stats

    def list_services(self) -> List[Dict[str, Any]]:
        return [self.collect_service_stats(service.name) for service in self.manager.all()]

    def sample_metrics(self, now: Optional[datetime] = None) -> None:
        """Record one metric point for the host and for every managed service."""
        now = now or utcnow()
        system = self.collect_system_stats()
        self.collector.collect(
            SYSTEM_SERVICE,
            {
                "cpu_usage": float(system["cpu_usage"]),
                "memory_usage": float(system["memory_usage"]),
                "disk_usage": float(system["disk_usage"]),
                "thread_count": float(system["thread_count"]),
            },
            now=now,
        )
        for service in self.manager.all():
            stats = self.collect_service_stats(service.name)
            self.collector.collect(
                service.name,
                {
                    "running": 1.0 if stats["status"] == "running" else 0.0,
                    "uptime_seconds": float(stats["uptime_seconds"]),
                    "error_count": float(stats["error_count"]),
                    "cpu_usage": float(stats["cpu_usage"]),
                    "memory_usage": float(stats["memory_usage"]),
                },
                now=now,
            )

    def service_metrics(self, name: str) -> Dict[str, Any]:
        if name != SYSTEM_SERVICE:
            self.manager.get(name)
        latest = self.collector.get_latest(name)
        return {
            "service": name,
            "timestamp": latest.timestamp.isoformat() if latest else None,
            "metrics": dict(latest.values) if latest else {},
        }

    def service_metrics_history(self, name: str, duration: str = "1h", now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        if name != SYSTEM_SERVICE:
            self.manager.get(name)
        now = now or utcnow()
        window = HISTORY_WINDOWS.get(duration, HISTORY_WINDOWS["1h"])
        points = self.collector.get_metrics(name, start=now - window, end=now)

        by_minute: Dict[datetime, Dict[str, Any]] = {}
        for point in points:
            minute = point.timestamp.replace(second=0, microsecond=0)
            entry = by_minute.setdefault(minute, {"timestamp": minute.isoformat()})
            entry.update(point.values)
        return [by_minute[key] for key in sorted(by_minute)]

    def service_health(self, name: str) -> Dict[str, Any]:
        return self.manager.get(name).health_check()

    def service_logs(self, name: str, limit: int = 100) -> List[str]:
        if name != SYSTEM_SERVICE and name != "all":
            self.manager.get(name)
        limit = max(1, min(limit, 1000))
        return self.log_buffer.records(name, limit)

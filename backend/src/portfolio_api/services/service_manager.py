"""Managed background services for the devpanel.

A managed service can be started, stopped and restarted at runtime and
reports its uptime and recent errors. ``BackgroundTaskService`` runs a
callable on a fixed interval in a daemon thread.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional

from ..db.database import utcnow
from ..errors import ServiceNotFoundError

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 20


class ManagedService:
    def __init__(self, name: str) -> None:
        self.name = name
        self._running = False
        self._started_at: Optional[float] = None
        self._errors: Deque[str] = deque(maxlen=MAX_RECORDED_ERRORS)
        self._last_check: Optional[datetime] = None
        self._state_lock = threading.RLock()
        # Serializes start/stop so on_start never overlaps a pending on_stop.
        self._lifecycle_lock = threading.RLock()

    # Subclasses hook in here.
    def on_start(self) -> None:
        pass

    def on_stop(self) -> None:
        pass

    @property
    def running(self) -> bool:
        with self._state_lock:
            return self._running

    def start(self) -> None:
        with self._lifecycle_lock:
            with self._state_lock:
                if self._running:
                    return
            self.on_start()
            with self._state_lock:
                self._running = True
                self._started_at = time.monotonic()
        logger.info("Service %s started", self.name, extra={"service": self.name})

    def stop(self) -> None:
        with self._lifecycle_lock:
            with self._state_lock:
                if not self._running:
                    return
                self._running = False
                self._started_at = None
            # Outside the state lock: on_stop joins the worker thread.
            self.on_stop()
        logger.info("Service %s stopped", self.name, extra={"service": self.name})

    def restart(self) -> None:
        self.stop()
        self.start()

    def record_error(self, error: BaseException | str) -> None:
        message = str(error)
        with self._state_lock:
            self._errors.append(f"{utcnow().isoformat()} {message}")
        logger.error("Service %s error: %s", self.name, message, extra={"service": self.name})

    def uptime_seconds(self) -> float:
        with self._state_lock:
            if not self._running or self._started_at is None:
                return 0.0
            return time.monotonic() - self._started_at

    def status(self) -> dict:
        with self._state_lock:
            self._last_check = utcnow()
            return {
                "name": self.name,
                "running": self._running,
                "uptime_seconds": round(self.uptime_seconds(), 3),
                "errors": list(self._errors),
                "last_check": self._last_check.isoformat(),
            }

    def health_check(self) -> dict:
        status = self.status()
        errors = len(status["errors"])
        if not status["running"]:
            state = "unhealthy"
        elif errors:
            state = "degraded"
        else:
            state = "healthy"
        return {
            "service": self.name,
            "healthy": state == "healthy",
            "status": state,
            "checks": {
                "running": status["running"],
                "errors": errors,
                "uptime_seconds": status["uptime_seconds"],
            },
            "checked_at": status["last_check"],
        }


class BackgroundTaskService(ManagedService):
    """Runs ``task`` every ``interval`` seconds until stopped."""

    def __init__(self, name: str, task: Callable[[], object], interval: float) -> None:
        super().__init__(name)
        self.task = task
        self.interval = interval
        self.runs = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def on_start(self) -> None:
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=f"service-{self.name}", daemon=True)
        self._thread.start()

    def on_stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None

    def run_once(self) -> None:
        try:
            self.task()
            self.runs += 1
        except Exception as exc:
            logger.exception("Task for service %s failed", self.name, extra={"service": self.name})
            self.record_error(exc)

    def _loop(self) -> None:
        stop_event = self._stop_event
        while not stop_event.is_set():
            self.run_once()
            stop_event.wait(self.interval)

    def status(self) -> dict:
        status = super().status()
        status["interval_seconds"] = self.interval
        status["runs"] = self.runs
        return status


class ServiceManager:
    def __init__(self) -> None:
        self._services: Dict[str, ManagedService] = {}
        self._lock = threading.Lock()

    def register(self, service: ManagedService) -> None:
        with self._lock:
            self._services[service.name] = service

    def get(self, name: str) -> ManagedService:
        with self._lock:
            service = self._services.get(name)
        if service is None:
            raise ServiceNotFoundError(f"Service {name} not found")
        return service

    def all(self) -> List[ManagedService]:
        with self._lock:
            return [self._services[name] for name in sorted(self._services)]

    def start(self, name: str) -> None:
        self.get(name).start()

    def stop(self, name: str) -> None:
        self.get(name).stop()

    def restart(self, name: str) -> None:
        self.get(name).restart()

    def get_status(self, name: str) -> dict:
        return self.get(name).status()

    def start_all(self) -> None:
        for service in self.all():
            service.start()

    def stop_all(self) -> None:
        for service in self.all():
            try:
                service.stop()
            except Exception:
                logger.exception("Failed to stop service %s", service.name)

# middleware.py
# HTTP middleware and request helpers shared by the routers.
# - RateLimiter: per-client sliding one-minute window
# - security_headers_middleware: adds browser security headers
# - tracking_middleware: records page views for non-API paths once the response is sent

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Deque, Dict, Optional

from fastapi import Request
from starlette.background import BackgroundTask, BackgroundTasks

from ..services.session_fingerprint import extract_client_ip
from ..services.visitor_service import RequestInfo

logger = logging.getLogger(__name__)

STATIC_EXTENSIONS = (
    ".js", ".css", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico",
    ".woff", ".woff2", ".ttf", ".eot", ".map", ".webp",
)
UNTRACKED_PATHS = {"/health", "/ping", "/metrics", "/favicon.ico", "/docs", "/redoc", "/openapi.json"}

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline';",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


class RateLimiter:
    """Allows ``max_per_minute`` hits per client key in any 60 second window."""

    def __init__(self, max_per_minute: int, window_seconds: float = 60.0) -> None:
        self.max_per_minute = max_per_minute
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = 0.0

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        if self.max_per_minute <= 0:
            return True
        now = time.monotonic() if now is None else now
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.max_per_minute:
                return False
            hits.append(now)
            return True

    def _sweep(self, cutoff: float) -> None:
        # Caller holds the lock.
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


def client_key(request: Request) -> str:
    host = request.client.host if request.client else None
    ip = extract_client_ip(request.headers, host) or "unknown"
    return f"{ip}|{request.headers.get('user-agent', '')}"


def request_info(request: Request) -> RequestInfo:
    headers = request.headers
    host = request.client.host if request.client else None
    return RequestInfo(
        user_agent=headers.get("user-agent", ""),
        accept_language=headers.get("accept-language", ""),
        accept_encoding=headers.get("accept-encoding", ""),
        referrer=headers.get("referer"),
        dnt=headers.get("dnt"),
        client_ip=extract_client_ip(headers, host),
        country_hint=headers.get("cf-ipcountry"),
    )


def should_skip_tracking(path: str) -> bool:
    if path in UNTRACKED_PATHS:
        return True
    if path.lower().endswith(STATIC_EXTENSIONS):
        return True
    if path.startswith("/api/") or path.startswith("/ws/"):
        return True
    return False


async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


async def tracking_middleware(request: Request, call_next):
    response = await call_next(request)
    if request.method != "GET" or should_skip_tracking(request.url.path) or response.status_code >= 400:
        return response

    container = getattr(request.app.state, "container", None)
    if container is None:
        return response
    task = BackgroundTask(_track_page_view, container, request_info(request), request.url.path)
    existing = getattr(response, "background", None)
    response.background = task if existing is None else BackgroundTasks([existing, task])
    return response


def _track_page_view(container, info: RequestInfo, path: str) -> None:
    try:
        container.visitors.track_page_view(info, path)
    except Exception:
        logger.exception("Visitor tracking failed for %s", path)

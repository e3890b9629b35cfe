"""Fan-out of realtime visitor events to connected dashboard clients.

Clients are registered with their own bounded queue and the event loop that
drains it. ``broadcast`` may be called from any thread (tracking runs in the
request threadpool); delivery is best effort and a full queue drops the
message for that client only.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class HubClient:
    def __init__(
        self,
        maxsize: int = 256,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        client_id: Optional[str] = None,
    ) -> None:
        self.id = client_id or str(uuid.uuid4())
        self.loop = loop or asyncio.get_running_loop()
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, message: Dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Dropping message for slow client %s", self.id)

    def deliver(self, message: Dict[str, Any]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self._offer(message)
        else:
            self.loop.call_soon_threadsafe(self._offer, message)

    async def receive(self) -> Dict[str, Any]:
        return await self.queue.get()


class RealtimeHub:
    def __init__(self) -> None:
        self._clients: Dict[str, HubClient] = {}
        self._lock = threading.Lock()

    def register(self, client: HubClient) -> None:
        with self._lock:
            self._clients[client.id] = client
            total = len(self._clients)
        logger.info("Realtime client %s connected (%d total)", client.id, total)

    def unregister(self, client: HubClient) -> None:
        with self._lock:
            removed = self._clients.pop(client.id, None)
            total = len(self._clients)
        if removed is not None:
            logger.info("Realtime client %s disconnected (%d total)", client.id, total)

    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def broadcast(self, message: Dict[str, Any]) -> int:
        """Queue ``message`` for every client and return how many were targeted."""
        with self._lock:
            clients = list(self._clients.values())
        delivered = 0
        for client in clients:
            try:
                client.deliver(message)
                delivered += 1
            except RuntimeError:
                # Loop already closed; the websocket handler will unregister it.
                logger.debug("Client %s loop closed, skipping", client.id)
        return delivered

    def close(self) -> None:
        with self._lock:
            self._clients.clear()

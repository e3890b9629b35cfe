# realtime_routes.py
# WebSocket feed of realtime visitor events for dashboard clients.
# Protocol:
#   server -> {"type": "connected", "realtime": <count>} on connect
#   server -> hub messages, e.g. {"type": "pageview", "path": ..., "realtime": ...}
#   client -> "ping", server -> "pong"

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from ..services.realtime_hub import HubClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


async def _send_hub_messages(websocket: WebSocket, client: HubClient) -> None:
    while True:
        message = await client.receive()
        await websocket.send_json(message)


async def _receive_client_messages(websocket: WebSocket) -> None:
    while True:
        text = await websocket.receive_text()
        if text.strip().lower() == "ping":
            await websocket.send_text("pong")


@router.websocket("/ws/visitors")
async def visitor_feed(websocket: WebSocket) -> None:
    container = websocket.app.state.container
    await websocket.accept()

    client = HubClient(maxsize=container.settings.hub_client_buffer)
    container.hub.register(client)
    tasks = []
    try:
        realtime = await run_in_threadpool(container.visitors.get_realtime_count)
        await websocket.send_json({"type": "connected", "realtime": realtime})

        tasks = [
            asyncio.create_task(_send_hub_messages(websocket, client)),
            asyncio.create_task(_receive_client_messages(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Realtime client %s closed with error: %s", client.id, exc)
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        container.hub.unregister(client)
        if client.dropped:
            logger.info("Realtime client %s dropped %d messages", client.id, client.dropped)

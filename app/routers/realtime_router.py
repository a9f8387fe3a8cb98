"""
Realtime endpoint: one websocket per agent client, served by the broadcast hub.

See `app.realtime.hub` for the frame protocol.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    hub = websocket.app.state.inbox.hub
    await websocket.accept()
    client = await hub.register(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await hub.handle_frame(client, raw)
    except WebSocketDisconnect:
        logger.debug("Realtime client %s closed the socket", client.client_id)
    finally:
        await hub.unregister(client.client_id)

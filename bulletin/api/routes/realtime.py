"""
Realtime Routes
WebSocket feed of announcement events
"""
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from bulletin.api.routes.auth import employee_from_token
from bulletin.services.realtime import ANNOUNCEMENTS_CHANNEL, user_channel

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/announcements")
async def announcements_feed(websocket: WebSocket, token: Optional[str] = None):
    """
    Joins the caller's personal channel and the shared announcements channel.
    Incoming messages are ignored apart from "ping".
    """
    employee = await employee_from_token(token)
    if employee is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    manager = websocket.app.state.services.publisher
    await manager.connect(websocket, [user_channel(employee.employee_id), ANNOUNCEMENTS_CHANNEL])
    logger.info("Employee %s connected to announcement feed", employee.employee_id)

    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
        logger.info("Employee %s disconnected from announcement feed", employee.employee_id)

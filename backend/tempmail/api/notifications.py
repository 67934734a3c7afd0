"""WebSocket endpoint binding a client to its mailbox.

Protocol (server -> client): ``connected`` once, then ``new_message`` per
delivered mail and ``ping`` every heartbeat interval. Any client frame
counts as a pong.
"""

from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..channels import INVALID_MAILBOX, WebSocketChannel
from ..lifecycle import Mailroom
from ..observability.logging_config import get_logger
from ..observability.request_id import generate_request_id, set_request_id

logger = get_logger(__name__)

router = APIRouter(tags=["Notifications"])


async def _reject(websocket: WebSocket, email: Optional[str]) -> None:
    logger.warning(f"WebSocket connection rejected: invalid email {email}")
    # Accept first so the client sees the close code instead of an HTTP 403
    await websocket.accept()
    await websocket.close(code=INVALID_MAILBOX, reason="Invalid email")


@router.websocket("/ws")
async def notifications(websocket: WebSocket, email: Optional[str] = None) -> None:
    set_request_id(generate_request_id("ws"))
    mailroom: Mailroom = websocket.app.state.mailroom

    session = mailroom.directory.get(email) if email else None
    if session is None:
        await _reject(websocket, email)
        return

    await websocket.accept()
    channel = WebSocketChannel(websocket, session.address)
    mailroom.registry.bind(session.address, channel)

    # The mailbox may have been swept between the lookup and the bind
    if not mailroom.directory.exists(session.address):
        mailroom.registry.unbind(session.address, channel)
        await channel.close(INVALID_MAILBOX, "Invalid email")
        return

    mailroom.heartbeat.track(channel)
    logger.info(f"WebSocket connected: {session.address}", extra={"address": session.address})

    try:
        await mailroom.notifier.send_connected(channel, session)
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            channel.mark_alive()
    except WebSocketDisconnect as e:
        logger.info(
            f"WebSocket disconnected: {session.address} (code {e.code})",
            extra={"address": session.address},
        )
    finally:
        channel.mark_closed()
        mailroom.heartbeat.discard(channel)
        mailroom.registry.unbind(session.address, channel)

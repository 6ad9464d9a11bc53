import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from giftcircle.core.security import subject_from_token
from giftcircle.db.session import async_session_factory
from giftcircle.realtime.manager import Subscription, group_stream, manager, notifications_stream
from giftcircle.services import groups

router = APIRouter(tags=["ws"])
logger = logging.getLogger("giftcircle.ws")

WS_PING_INTERVAL = 30   # seconds between server-initiated pings
WS_PING_TIMEOUT  = 60   # seconds to wait for pong before closing idle connection


def _viewer_id(websocket: WebSocket) -> str | None:
    token = None
    auth_header = websocket.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.removeprefix("Bearer ").strip()
    elif "token" in websocket.query_params:
        token = websocket.query_params["token"]
    elif "access_token" in websocket.cookies:
        token = websocket.cookies.get("access_token")
    return subject_from_token(token)


async def _serve(websocket: WebSocket, subscription: Subscription) -> None:
    """Keep the subscription alive until the client goes away, then release it."""
    try:
        while True:
            try:
                await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=WS_PING_INTERVAL,
                )
            except asyncio.TimeoutError:
                try:
                    await asyncio.wait_for(
                        websocket.send_text('{"type":"ping"}'),
                        timeout=WS_PING_TIMEOUT - WS_PING_INTERVAL,
                    )
                except (asyncio.TimeoutError, RuntimeError, WebSocketDisconnect):
                    logger.info("WS idle timeout, closing stream=%s", subscription.stream)
                    break
    except WebSocketDisconnect:
        logger.info("WS disconnected stream=%s", subscription.stream)
    finally:
        subscription.release()


async def _is_group_member(group_id: int, user_id: str) -> bool:
    # one short session for the check; the socket itself holds no connection
    async with async_session_factory() as db:
        return await groups.is_member(db, group_id, user_id)


@router.websocket("/ws/groups/{group_id}")
async def group_chat_ws(websocket: WebSocket, group_id: int) -> None:
    viewer_id = _viewer_id(websocket)
    if viewer_id is None:
        logger.warning("WS auth required group_id=%s", group_id)
        await websocket.close(code=1008)
        return
    if not await _is_group_member(group_id, viewer_id):
        logger.warning("WS access denied group_id=%s user_id=%s", group_id, viewer_id)
        await websocket.close(code=1008)
        return

    # membership is settled before the handshake; subscribe straight after it
    await websocket.accept()
    subscription = manager.subscribe(group_stream(group_id), websocket, user_id=viewer_id)
    logger.info("WS connected group_id=%s user_id=%s", group_id, viewer_id)
    await _serve(websocket, subscription)


@router.websocket("/ws/notifications")
async def notifications_ws(websocket: WebSocket) -> None:
    await websocket.accept()
    viewer_id = _viewer_id(websocket)
    if viewer_id is None:
        logger.warning("WS auth required for notifications")
        await websocket.close(code=1008)
        return

    subscription = manager.subscribe(notifications_stream(viewer_id), websocket, user_id=viewer_id)
    logger.info("WS connected notifications user_id=%s", viewer_id)
    await _serve(websocket, subscription)

"""Websocket endpoint feeding the push delivery channel."""

from aiohttp import WSMsgType, web

from marybot.logging import get_logger

log = get_logger("marybot.api.routes.realtime")


async def handle_websocket(request: web.Request) -> web.WebSocketResponse:
    """GET /ws/{user_id}: hold a push connection open for a user."""
    hub = request.app["connection_hub"]
    user_id = request.match_info["user_id"]

    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)
    hub.connect(user_id, ws)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT and msg.data == "ping":
                await ws.send_str("pong")
            elif msg.type == WSMsgType.ERROR:
                log.warning("websocket_error", user_id=user_id, error=str(ws.exception()))
    finally:
        hub.disconnect(user_id, ws)

    return ws

import asyncio
import logging
from typing import Callable, Optional, Set

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as SchemaError
from supabase import AsyncClient

from family_chat.core.dependencies import get_auth_service, get_profile_repository, resolve_user
from family_chat.core.exceptions import ChatError
from family_chat.database.supabase_client import get_supabase
from family_chat.modules.auth.schemas import CurrentUser
from family_chat.modules.auth.service import AuthService
from family_chat.modules.profiles.repository import ProfileRepository
from family_chat.modules.sessions.schemas import SessionEvent, WsInbound, WsOutbound
from family_chat.modules.sessions.service import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])

# Application-defined close code: token missing or rejected
WS_CLOSE_UNAUTHORIZED = 4401

SessionFactory = Callable[[CurrentUser], ChatSession]


def get_session_factory(supabase: AsyncClient = Depends(get_supabase)) -> SessionFactory:
    def build(user: CurrentUser) -> ChatSession:
        return ChatSession.for_user(supabase, user.id, user.family_id)
    return build


async def _pump(websocket: WebSocket, outbox: "asyncio.Queue[WsOutbound]") -> None:
    while True:
        envelope = await outbox.get()
        await websocket.send_json(envelope.model_dump(mode="json"))


async def _handle(session: ChatSession, inbound: WsInbound, outbox: "asyncio.Queue[WsOutbound]", tasks: Set[asyncio.Task]) -> None:
    data = inbound.data
    if inbound.type == "ping":
        outbox.put_nowait(WsOutbound(type="pong"))
    elif inbound.type == "chats.list":
        chats = await session.list_chats()
        outbox.put_nowait(WsOutbound(type="chats.listed", data={"chats": [c.model_dump(mode="json") for c in chats]}))
    elif inbound.type == "chat.select":
        chat_id = data.get("chat_id")
        if not chat_id:
            outbox.put_nowait(WsOutbound(type="error", data={"detail": "chat_id is required"}))
            return
        # Selection runs in the background so a newer selection can supersede a slow load
        task = asyncio.ensure_future(session.select_chat_by_id(str(chat_id)))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
    elif inbound.type == "chat.deselect":
        await session.deselect_chat()
    elif inbound.type == "message.send":
        if await session.send(str(data.get("content") or "")):
            outbox.put_nowait(WsOutbound(type="message.accepted"))
        else:
            outbox.put_nowait(WsOutbound(type="message.rejected", data={"draft": session.draft}))
    elif inbound.type == "previews.watch":
        previews = await session.watch_previews()
        outbox.put_nowait(WsOutbound(
            type="previews.loaded",
            data={"previews": {cid: p.model_dump(mode="json") for cid, p in previews.items()}}
        ))
    elif inbound.type == "previews.unwatch":
        await session.unwatch_previews()
    else:
        outbox.put_nowait(WsOutbound(type="error", data={"detail": f"Unknown message type: {inbound.type}"}))


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    token: Optional[str] = None,
    auth_service: AuthService = Depends(get_auth_service),
    profiles: ProfileRepository = Depends(get_profile_repository),
    session_factory: SessionFactory = Depends(get_session_factory)
):
    """One chat session per connection; authenticate with ?token=<Supabase access token>."""
    try:
        user = await resolve_user(token, auth_service, profiles)
    except ChatError as e:
        logger.info(f"Rejecting websocket: {e.detail}")
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    await websocket.accept()
    session = session_factory(user)
    outbox: "asyncio.Queue[WsOutbound]" = asyncio.Queue()

    def forward(event: SessionEvent) -> None:
        outbox.put_nowait(WsOutbound(type=event.type.value, data=event.data))

    session.add_listener(forward)
    pump = asyncio.ensure_future(_pump(websocket, outbox))
    tasks: Set[asyncio.Task] = set()
    logger.info(f"Chat session opened for {user.id}")
    try:
        while True:
            raw = await websocket.receive_json()
            try:
                inbound = WsInbound(**raw)
            except (SchemaError, TypeError):
                outbox.put_nowait(WsOutbound(type="error", data={"detail": "Malformed message"}))
                continue
            try:
                await _handle(session, inbound, outbox, tasks)
            except ChatError as e:
                outbox.put_nowait(WsOutbound(type="error", data={"detail": e.detail}))
    except WebSocketDisconnect:
        logger.info(f"Chat session closed for {user.id}")
    finally:
        for task in list(tasks):
            task.cancel()
        pump.cancel()
        await session.close()

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from auth import AuthError, resolve_token
from mongo import get_db
from realtime import appointments_topic, conversations_topic, hub, messages_topic
from routers.appointment_routes import appointments_for
from routers.conversation_routes import conversations_for, messages_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["live"])

# Application-defined close codes (4000-4999) and the standard internal error
CLOSE_UNAUTHORIZED = 4401
CLOSE_INTERNAL_ERROR = 1011
CLOSE_FORBIDDEN = 4403


async def authenticate(websocket: WebSocket, db):
    token = websocket.query_params.get("token", "")
    try:
        user = await run_in_threadpool(resolve_token, token, db)
    except AuthError as e:
        logger.info(f"Rejected live subscription: {e}")
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return None
    if user.role is None:
        await websocket.close(code=CLOSE_FORBIDDEN)
        return None
    return user


async def stream(websocket: WebSocket, topic: str, snapshot):
    """
    Push ``snapshot()`` on connect and again every time ``topic`` changes.

    Runs until the client disconnects. The subscription is taken before
    the first snapshot so no change can slip in between. If a snapshot
    cannot be produced or sent, the socket is closed with 1011 so the
    client knows the stream has stopped.
    """
    subscription = hub.subscribe(topic)

    async def forward():
        while True:
            await websocket.send_json(await run_in_threadpool(snapshot))
            await subscription.wait()

    async def listen():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass

    forwarder = asyncio.create_task(forward())
    listener = asyncio.create_task(listen())
    try:
        done, _ = await asyncio.wait({forwarder, listener}, return_when=asyncio.FIRST_COMPLETED)
        if listener in done:
            listener.result()
        elif forwarder.exception() is not None:
            logger.error(f"Live stream on {topic} stopped: {forwarder.exception()}")
            if websocket.client_state == WebSocketState.CONNECTED:
                await websocket.close(code=CLOSE_INTERNAL_ERROR)
    finally:
        forwarder.cancel()
        listener.cancel()
        hub.unsubscribe(subscription)


@router.websocket("/conversations")
async def live_conversations(websocket: WebSocket, db=Depends(get_db)):
    await websocket.accept()
    user = await authenticate(websocket, db)
    if user is None:
        return
    await stream(
        websocket,
        conversations_topic(user.role, user.uid),
        lambda: {"conversations": conversations_for(db, user)},
    )


@router.websocket("/conversations/{conversation_id}/messages")
async def live_messages(websocket: WebSocket, conversation_id: str, db=Depends(get_db)):
    await websocket.accept()
    user = await authenticate(websocket, db)
    if user is None:
        return
    conversation = await run_in_threadpool(db.conversations.find_one, {"_id": conversation_id})
    if not conversation or user.uid not in (conversation["patientId"], conversation["doctorId"]):
        await websocket.close(code=CLOSE_FORBIDDEN)
        return
    await stream(
        websocket,
        messages_topic(conversation_id),
        lambda: {"conversationId": conversation_id, "messages": messages_for(db, conversation_id)},
    )


@router.websocket("/appointments")
async def live_appointments(websocket: WebSocket, db=Depends(get_db)):
    await websocket.accept()
    user = await authenticate(websocket, db)
    if user is None:
        return
    await stream(
        websocket,
        appointments_topic(user.role, user.uid),
        lambda: {"appointments": appointments_for(db, user)},
    )

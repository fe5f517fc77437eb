"""
Presence routes.

GET /presence/{user_id} returns a snapshot for status badges.
WS  /presence/ws streams a presence session to a connected client: the
client owns its own record unless it passes ?target=<user_id>, and reports
visibility/connectivity changes as JSON frames:

    {"type": "visibility", "visible": false}
    {"type": "connectivity", "online": true}
"""

import asyncio
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from assignhub.auth.verify import current_user_id, verify_jwt
from assignhub.features.presence.domain.models import PresenceSnapshotResponse, PresenceState
from assignhub.features.presence.repository import presence_repository
from assignhub.features.presence.signals import EnvironmentSignals
from assignhub.features.presence.status import describe_status
from assignhub.features.presence.tracker import presence_tracker
from assignhub.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("/{user_id}", response_model=PresenceSnapshotResponse)
async def get_presence(user_id: UUID, _viewer: str = Depends(current_user_id)):
    """Presence snapshot for one user. Users without presence history read as offline."""
    user_id = str(user_id)
    try:
        record = await presence_repository.fetch(user_id)
        name = await presence_repository.fetch_display_name(user_id)
    except Exception as e:
        logger.error("Error fetching user presence", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Presence unavailable"
        ) from e

    online = record.online if record else False
    last_seen = record.last_seen if record else None
    return PresenceSnapshotResponse(
        user_id=user_id,
        online=online,
        last_seen=last_seen,
        status_text=describe_status(name, online, last_seen),
    )


def _state_frame(state: PresenceState) -> dict:
    return {
        "type": "presence",
        "online": state.is_online,
        "last_seen": state.last_seen.isoformat() if state.last_seen else None,
        "loading": state.loading,
    }


def apply_client_frame(signals: EnvironmentSignals, frame: dict) -> bool:
    """Feed one client frame into the session's signals. Returns False for unknown frames."""
    kind = frame.get("type")
    if kind == "visibility":
        signals.set_visibility(bool(frame.get("visible")))
    elif kind == "connectivity":
        if frame.get("online"):
            signals.go_online()
        else:
            signals.go_offline()
    else:
        return False
    return True


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        state = await outbox.get()
        await websocket.send_json(_state_frame(state))


@router.websocket("/ws")
async def presence_socket(
    websocket: WebSocket,
    token: str = Query(...),
    target: UUID | None = Query(None),
):
    try:
        viewer_id = verify_jwt(token)["sub"]
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    structlog.contextvars.bind_contextvars(user_id=viewer_id)

    outbox: asyncio.Queue[PresenceState] = asyncio.Queue()
    signals = EnvironmentSignals()
    session = await presence_tracker.track_presence(
        viewer_id,
        str(target) if target else None,
        signals=signals,
        on_change=outbox.put_nowait,
    )

    async with session:
        sender = asyncio.create_task(_pump(websocket, outbox))
        try:
            while True:
                try:
                    frame = await websocket.receive_json()
                except (ValueError, KeyError):
                    # Undecodable text or a binary frame
                    logger.debug("Ignoring malformed presence frame", user_id=viewer_id)
                    continue
                if not isinstance(frame, dict) or not session.owner:
                    continue
                if not apply_client_frame(signals, frame):
                    logger.debug("Ignoring presence frame", user_id=viewer_id, frame=frame)
        except WebSocketDisconnect:
            logger.info("Presence socket disconnected", user_id=viewer_id, owner=session.owner)
        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
            structlog.contextvars.unbind_contextvars("user_id")

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.config import EVENT_PING_SECONDS
from app.services import emergency_cases
from app.services.emergency_cases import CaseNotFoundError
from app.services.event_bus import event_bus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dashboard"])


async def _pump_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        try:
            event = await asyncio.wait_for(queue.get(), timeout=EVENT_PING_SECONDS)
        except asyncio.TimeoutError:
            event = {"type": "ping"}

        try:
            await websocket.send_json(event)
        except Exception:
            logger.debug("Failed to send event to dashboard client")
            break


@router.websocket("/ws/emergency")
async def department_feed(websocket: WebSocket):
    """Live ED feed: case_created, case_updated, case_discharged, resources_allocated."""
    await websocket.accept()
    queue = event_bus.subscribe()
    logger.info("ED dashboard client connected")
    await websocket.send_json({"type": "connected"})

    try:
        await _pump_events(websocket, queue)
    except WebSocketDisconnect:
        logger.info("ED dashboard client disconnected")
    except asyncio.CancelledError:
        pass
    finally:
        event_bus.unsubscribe(queue)


@router.websocket("/ws/emergency/{case_id}")
async def case_feed(websocket: WebSocket, case_id: str):
    """Live updates for a single case."""
    await websocket.accept()
    try:
        case = await emergency_cases.get_case(case_id)
    except CaseNotFoundError:
        await websocket.send_json({"type": "error", "message": "Case not found"})
        await websocket.close()
        return

    queue = event_bus.subscribe(case_id)
    await websocket.send_json({"type": "snapshot", "case": case.model_dump(mode="json")})

    try:
        await _pump_events(websocket, queue)
    except WebSocketDisconnect:
        logger.info("Case feed client for %s disconnected", case_id)
    except asyncio.CancelledError:
        pass
    finally:
        event_bus.unsubscribe(queue, case_id)

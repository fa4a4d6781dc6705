from fastapi import APIRouter, WebSocket

from app.services.websocket_manager import manager

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Dashboard feed: every published risk assessment is pushed as
    {"type": "risk_assessed", "record": {...}}. Incoming messages are ignored.
    """
    await manager.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except Exception:
        # Normal disconnects and errors are handled uniformly
        await manager.disconnect(websocket)

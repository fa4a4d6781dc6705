import logging
from typing import Any, List

from fastapi import WebSocket, WebSocketDisconnect

from app.schemas.risk_event import RiskAssessedRecord

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Simple in-memory websocket connection manager.

    All connected dashboard clients receive every published risk assessment.
    """

    def __init__(self) -> None:
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(
            "WebSocket connected. Active connections=%d", len(self.active_connections)
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        try:
            self.active_connections.remove(websocket)
        except ValueError:
            # Already removed or unknown connection
            pass
        logger.info(
            "WebSocket disconnected. Active connections=%d",
            len(self.active_connections),
        )

    async def broadcast(self, message: dict[str, Any]) -> None:
        if not self.active_connections:
            return
        dead_connections: list[WebSocket] = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except WebSocketDisconnect:
                dead_connections.append(connection)
            except Exception:
                # Do not break other listeners if one connection misbehaves
                logger.exception("Error broadcasting websocket message")
        for conn in dead_connections:
            await self.disconnect(conn)


manager = ConnectionManager()


async def broadcast_risk_assessed(record: RiskAssessedRecord) -> None:
    """Publish listener: push the outbound record to dashboard clients."""
    await manager.broadcast({"type": "risk_assessed", "record": record.to_wire()})

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Dict, List

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import uvicorn

from pos_common.config import (
    KAFKA_BOOTSTRAP_SERVERS, KAFKA_ENABLED, ORDER_EVENTS_TOPIC, configure_logging,
)
from pos_common.envelope import success

configure_logging()
logger = logging.getLogger(__name__)

KAFKA_GROUP_ID = "notification_service_group"


# CONNECTION MANAGEMENT
class ConnectionManager:
    def __init__(self):
        # Sockets grouped by branch_id
        self.active_connections: Dict[int, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, branch_id: int):
        await websocket.accept()
        self.active_connections.setdefault(branch_id, []).append(websocket)
        logger.info("Branch %s screen connected (%s open)", branch_id, len(self.active_connections[branch_id]))

    def disconnect(self, websocket: WebSocket, branch_id: int):
        if websocket in self.active_connections.get(branch_id, []):
            self.active_connections[branch_id].remove(websocket)
            logger.info("Branch %s screen disconnected", branch_id)

    async def send_message(self, message: str, branch_id: int) -> int:
        """Broadcast to every screen of a branch; dead sockets are dropped."""
        delivered = 0
        for connection in list(self.active_connections.get(branch_id, [])):
            try:
                await connection.send_text(message)
                delivered += 1
            except (RuntimeError, WebSocketDisconnect) as e:
                logger.warning("Dropping dead socket on branch %s: %s", branch_id, e)
                self.disconnect(connection, branch_id)
        return delivered


manager = ConnectionManager()


async def dispatch_event(raw: bytes) -> int:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Skipping malformed order event: %s", e)
        return 0
    branch_id = payload.get("branch_id")
    if branch_id is None:
        logger.warning("Order event %s has no branch, not broadcast", payload.get("event"))
        return 0
    return await manager.send_message(json.dumps(payload), int(branch_id))


async def consume_messages(max_retries: int = 10, delay: float = 5):
    consumer = AIOKafkaConsumer(
        ORDER_EVENTS_TOPIC,
        bootstrap_servers=KAFKA_BOOTSTRAP_SERVERS,
        group_id=KAFKA_GROUP_ID,
        auto_offset_reset="latest",
    )
    for i in range(max_retries):
        try:
            logger.info("Kafka consumer starting (attempt %s/%s)", i + 1, max_retries)
            await consumer.start()
            break
        except KafkaError as e:
            logger.warning("Kafka not reachable yet: %s", e)
            await asyncio.sleep(delay)
    else:
        logger.error("Kafka consumer gave up, screens only get /notify pushes")
        return

    try:
        async for msg in consumer:
            await dispatch_event(msg.value)
    finally:
        await consumer.stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if KAFKA_ENABLED:
        task = asyncio.create_task(consume_messages())
    yield
    if task:
        task.cancel()


app = FastAPI(title="notification_service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 1. WebSocket for kitchen / hall screens
@app.websocket("/ws/{branch_id}")
async def websocket_endpoint(websocket: WebSocket, branch_id: int):
    await manager.connect(websocket, branch_id)
    try:
        while True:
            await websocket.receive_text()  # keep-alive
    except WebSocketDisconnect:
        manager.disconnect(websocket, branch_id)


# 2. Direct push from other services
class NotifyPayload(BaseModel):
    branch_id: int
    message: str


@app.post("/notify")
async def notify_branch(payload: NotifyPayload):
    delivered = await manager.send_message(payload.message, payload.branch_id)
    return success({"status": "sent", "delivered": delivered})


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8006)

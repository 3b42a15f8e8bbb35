"""Order events published to Kafka for the notification service."""
import asyncio
import datetime
import json
import logging

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from pos_common.config import KAFKA_BOOTSTRAP_SERVERS, KAFKA_ENABLED, ORDER_EVENTS_TOPIC

logger = logging.getLogger(__name__)

ORDER_CREATED = "ORDER_CREATED"
ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
ORDER_ITEMS_CHANGED = "ORDER_ITEMS_CHANGED"
ORDER_TABLE_TRANSFERRED = "ORDER_TABLE_TRANSFERRED"
KITCHEN_ITEM_UPDATED = "KITCHEN_ITEM_UPDATED"
BILL_GENERATED = "BILL_GENERATED"
ORDER_PAID = "ORDER_PAID"


class EventPublisher:
    def __init__(self, bootstrap_servers: str = KAFKA_BOOTSTRAP_SERVERS, topic: str = ORDER_EVENTS_TOPIC):
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.producer = None

    async def start(self, max_retries: int = 10, delay: float = 5):
        if not KAFKA_ENABLED:
            logger.info("Kafka disabled, order events stay local")
            return
        producer = AIOKafkaProducer(bootstrap_servers=self.bootstrap_servers)
        for i in range(max_retries):
            try:
                logger.info("Connecting to Kafka (attempt %s/%s)", i + 1, max_retries)
                await producer.start()
                self.producer = producer
                logger.info("Kafka producer connected")
                return
            except KafkaError as e:
                logger.warning("Kafka not reachable yet: %s", e)
                await asyncio.sleep(delay)
        # Orders keep working; screens fall back to polling
        logger.error("Giving up on Kafka after %s attempts, events will not be published", max_retries)

    async def stop(self):
        if self.producer:
            await self.producer.stop()
            self.producer = None

    async def publish(self, event: str, order, **extra):
        message = {
            "event": event,
            "order_id": order.id,
            "display_id": order.display_id,
            "branch_id": order.branch_id,
            "terminal": order.terminal,
            "status": order.status,
            "table_id": order.table_id,
            "at": datetime.datetime.utcnow().isoformat(),
        }
        message.update(extra)
        if not self.producer:
            return message
        try:
            await self.producer.send_and_wait(self.topic, json.dumps(message).encode("utf-8"))
        except KafkaError as e:
            logger.error("Failed to publish %s for order %s: %s", event, order.id, e)
        return message


publisher = EventPublisher()

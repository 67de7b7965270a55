import asyncio
import logging
from typing import List, Optional

from aiomqtt import Client as MQTTClient
from kafka import KafkaProducer

from ua_tag_monitor.config import Config, KafkaConfig, MqttConfig
from ua_tag_monitor.dispatcher import ChangedItem

logger = logging.getLogger(__name__)


class KafkaForwarder:
    """
    Sends present values to a fixed Kafka topic and partition.

    Every record waits for one broker acknowledgement; send errors propagate
    to the caller.
    """

    def __init__(self, config: KafkaConfig, producer: Optional[KafkaProducer] = None) -> None:
        self.config = config
        self.producer = producer

    async def connect(self) -> None:
        if self.producer is None:
            self.producer = await asyncio.to_thread(self._create_producer)
        logger.info("Connected to Kafka broker %s", self.config.broker)

    def _create_producer(self) -> KafkaProducer:
        timeout_ms = int(self.config.ack_timeout * 1000)
        return KafkaProducer(
            bootstrap_servers=[self.config.broker],
            acks=1,
            request_timeout_ms=timeout_ms,
            max_block_ms=timeout_ms,
        )

    def payload(self, item: ChangedItem) -> bytes:
        return item.value.text.encode("utf-8")

    def send_sync(self, item: ChangedItem) -> None:
        future = self.producer.send(
            self.config.topic,
            value=self.payload(item),
            key=self.config.key.encode("utf-8"),
            partition=self.config.partition,
        )
        future.get(timeout=self.config.ack_timeout)

    async def send(self, item: ChangedItem) -> None:
        if self.producer is None:
            raise RuntimeError("Kafka forwarder is not connected")
        await asyncio.to_thread(self.send_sync, item)
        logger.debug("Sent %s to Kafka topic %s", item.node_id, self.config.topic)

    async def close(self) -> None:
        if self.producer is not None:
            await asyncio.to_thread(self.producer.close)
            self.producer = None


class MqttForwarder:
    """Publishes present values to ``<prefix>/<tag>`` on an MQTT broker."""

    def __init__(self, config: MqttConfig, client: Optional[MQTTClient] = None) -> None:
        self.config = config
        self.client = client
        self.connected = False

    async def connect(self) -> None:
        if self.client is None:
            self.client = MQTTClient(
                hostname=self.config.broker,
                port=self.config.port,
                username=self.config.user,
                password=self.config.password,
            )
        await self.client.__aenter__()
        self.connected = True
        logger.info("Connected to MQTT broker %s:%s", self.config.broker, self.config.port)

    def topic(self, item: ChangedItem) -> str:
        return f"{self.config.topic_prefix}/{item.tag}"

    async def send(self, item: ChangedItem) -> None:
        if not self.connected:
            raise RuntimeError("MQTT forwarder is not connected")
        await self.client.publish(self.topic(item), item.value.text, qos=self.config.qos)

    async def close(self) -> None:
        if self.client is not None and self.connected:
            await self.client.__aexit__(None, None, None)
            self.connected = False
            logger.info("Disconnected from MQTT broker")


def build_forwarders(config: Config) -> List:
    forwarders: List = []
    if config.kafka is not None:
        forwarders.append(KafkaForwarder(config.kafka))
    if config.mqtt is not None:
        forwarders.append(MqttForwarder(config.mqtt))
    return forwarders

"""Kafka message producer with worker-specific configuration."""

import json
import logging
from typing import Any

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel

from config.config import SensemakerConfig
from core.errors import TransportError
from core.utils.json_serializers import json_serializer
from sensemaker.common.kafka_config import build_kafka_security_config
from sensemaker.common.metrics import record_message_produced, update_connection_status
from sensemaker.common.types import ProduceResult

logger = logging.getLogger(__name__)


def encode_value(value: BaseModel | dict[str, Any] | bytes) -> bytes:
    """Serialize a message value: raw bytes pass through, models use their wire aliases."""
    if isinstance(value, bytes):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True).encode("utf-8")
    return json.dumps(value, default=json_serializer).encode("utf-8")


def encode_key(key: str | bytes | None) -> bytes | None:
    if key is None or isinstance(key, bytes):
        return key
    return key.encode("utf-8")


class MessageProducer:
    """Async message producer with worker-specific config."""

    def __init__(self, config: SensemakerConfig, worker_name: str):
        # Producer settings merge worker-specific overrides over producer_defaults
        self.config = config
        self.worker_name = worker_name
        self._producer: AIOKafkaProducer | None = None
        self._started = False
        self.producer_config = config.get_worker_config(worker_name, "producer")

        logger.info(
            "Initialized message producer",
            extra={
                "worker_name": worker_name,
                "bootstrap_servers": config.bootstrap_servers,
                "security_protocol": config.security_protocol,
            },
        )

    def _resolve_acks_and_idempotence(self) -> tuple[Any, bool]:
        """Resolve acks value and idempotence setting, enforcing mutual constraints."""
        acks_value = self.producer_config.get("acks", "all")
        if isinstance(acks_value, str) and acks_value.isdigit():
            acks_value = int(acks_value)

        enable_idempotence = self.producer_config.get("enable_idempotence", True)
        if enable_idempotence and acks_value != "all":
            logger.warning(
                "Overriding acks to 'all' because enable_idempotence=True requires it",
                extra={"configured_acks": acks_value, "worker_name": self.worker_name},
            )
            acks_value = "all"

        return acks_value, enable_idempotence

    def _build_kafka_config(self) -> dict[str, Any]:
        acks_value, enable_idempotence = self._resolve_acks_and_idempotence()

        kafka_config: dict[str, Any] = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": f"sensemaker-{self.worker_name}",
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "acks": acks_value,
            "enable_idempotence": enable_idempotence,
            "retry_backoff_ms": self.producer_config.get("retry_backoff_ms", 1000),
            # Task payloads carry the whole comment set
            "max_request_size": self.producer_config.get("max_request_size", 10 * 1024 * 1024),
        }

        if "linger_ms" in self.producer_config:
            kafka_config["linger_ms"] = self.producer_config["linger_ms"]
        if "compression_type" in self.producer_config:
            compression = self.producer_config["compression_type"]
            kafka_config["compression_type"] = None if compression == "none" else compression

        kafka_config.update(build_kafka_security_config(self.config))
        return kafka_config

    async def start(self) -> None:
        if self._started:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        logger.info("Starting message producer", extra={"worker_name": self.worker_name})

        self._producer = AIOKafkaProducer(**self._build_kafka_config())
        await self._producer.start()
        self._started = True
        update_connection_status("producer", connected=True)

        logger.info(
            "Message producer started successfully",
            extra={"bootstrap_servers": self.config.bootstrap_servers},
        )

    async def stop(self) -> None:
        # Errors during stop are logged but not re-raised to avoid masking original exceptions
        if self._producer is None:
            logger.debug("Producer already stopped")
            return

        logger.info("Stopping message producer")

        try:
            if self._started:
                await self._producer.flush()
            await self._producer.stop()
            logger.info("Message producer stopped successfully")
        except Exception as e:
            logger.error(
                "Error stopping message producer",
                extra={"error": str(e)},
                exc_info=True,
            )
        finally:
            update_connection_status("producer", connected=False)
            self._producer = None
            self._started = False

    async def send(
        self,
        topic: str,
        key: str | bytes | None,
        value: BaseModel | dict[str, Any] | bytes,
        headers: dict[str, str] | None = None,
    ) -> ProduceResult:
        """Publish one message and wait for the broker acknowledgement.

        Raises:
            RuntimeError: If the producer was not started
            TransportError: If the broker rejects or times out the send
        """
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")

        value_bytes = encode_value(value)
        headers_list = None
        if headers:
            headers_list = [(k, str(v).encode("utf-8")) for k, v in headers.items()]

        logger.debug(
            "Sending message",
            extra={"topic": topic, "key": key, "value_size": len(value_bytes)},
        )

        try:
            metadata = await self._producer.send_and_wait(
                topic,
                key=encode_key(key),
                value=value_bytes,
                headers=headers_list,
            )
        except Exception as e:
            record_message_produced(topic, success=False)
            logger.error(
                "Failed to send message",
                extra={"topic": topic, "key": key, "error": str(e)},
                exc_info=True,
            )
            raise TransportError(f"Failed to publish to {topic}", cause=e) from e

        record_message_produced(topic, success=True)
        logger.debug(
            "Message sent successfully",
            extra={
                "topic": metadata.topic,
                "partition": metadata.partition,
                "offset": metadata.offset,
            },
        )
        return ProduceResult(
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
        )

    @property
    def is_started(self) -> bool:
        return self._started and self._producer is not None


__all__ = [
    "MessageProducer",
    "encode_key",
    "encode_value",
]

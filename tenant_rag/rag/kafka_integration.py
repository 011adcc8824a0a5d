"""Kafka Integration for the ingestion pipeline

Consumes business-event messages announcing that a tenant's source documents
changed and dispatches them to the same pipeline entry points as the HTTP
ingestion endpoints.
"""

import asyncio
import json
from typing import Any, Dict, Optional, Union

import structlog
from aiokafka import AIOKafkaConsumer
from pydantic import ValidationError

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import RAGServiceException
from tenant_rag.rag.ingestion import IngestionPipeline
from tenant_rag.rag.models import DeleteResult, DocumentEvent, IngestionRequest, IngestionResult

logger = structlog.get_logger(__name__)


def _deserialize(raw: bytes) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


class DocumentEventConsumer:
    """Consumer for document change events."""

    def __init__(self, ingestion: IngestionPipeline, settings: Optional[Settings] = None):
        """Initialize the consumer.

        Args:
            ingestion: Pipeline the events are dispatched to
            settings: Optional settings override
        """
        settings = settings or get_settings()
        self.ingestion = ingestion
        self.bootstrap_servers = settings.kafka.bootstrap_servers
        self.topic = settings.kafka.ingestion_topic
        self.group_id = settings.kafka.group_id
        self.auto_offset_reset = settings.kafka.auto_offset_reset
        self.consumer: Optional[AIOKafkaConsumer] = None
        self._task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self) -> bool:
        """Start consuming in a background task."""
        try:
            self.consumer = AIOKafkaConsumer(
                self.topic,
                bootstrap_servers=self.bootstrap_servers,
                group_id=self.group_id,
                auto_offset_reset=self.auto_offset_reset,
                value_deserializer=_deserialize,
            )
            await self.consumer.start()
        except Exception as e:
            logger.error(
                "Failed to start Kafka consumer",
                bootstrap_servers=self.bootstrap_servers,
                topic=self.topic,
                error=str(e),
            )
            self.consumer = None
            return False

        self.running = True
        self._task = asyncio.create_task(self._consume())
        logger.info("Kafka consumer started", topic=self.topic, group_id=self.group_id)
        return True

    async def stop(self):
        """Stop the consumer and its task."""
        self.running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self.consumer is not None:
            try:
                await self.consumer.stop()
                logger.info("Kafka consumer stopped", topic=self.topic)
            except Exception as e:
                logger.error("Error stopping Kafka consumer", topic=self.topic, error=str(e))
            self.consumer = None

    async def _consume(self):
        async for message in self.consumer:
            if not self.running:
                break
            try:
                await self.handle_message(message.value)
            except Exception as e:
                logger.error(
                    "Error processing Kafka message",
                    topic=self.topic,
                    offset=message.offset,
                    error=str(e),
                    exc_info=True,
                )

    async def handle_message(self, payload: Any) -> Optional[Union[IngestionResult, DeleteResult]]:
        """Validate one message and dispatch it. Malformed messages are dropped."""
        if not isinstance(payload, dict):
            logger.error("Invalid message format", topic=self.topic, payload_type=type(payload).__name__)
            return None

        try:
            event = DocumentEvent.model_validate(payload)
        except ValidationError as e:
            logger.error("Invalid message format", topic=self.topic, error=str(e))
            return None

        try:
            result = await self.dispatch(event)
        except RAGServiceException as e:
            logger.error(
                "Error processing document event",
                event_type=event.event,
                tenant_id=event.company_id,
                error=str(e),
            )
            return None

        logger.info(
            "Document event processed",
            event_type=event.event,
            tenant_id=event.company_id,
            success=result.success,
        )
        return result

    async def dispatch(self, event: DocumentEvent) -> Union[IngestionResult, DeleteResult]:
        """Route an event to the matching pipeline operation."""
        if event.event == "delete":
            return await self.ingestion.delete(event.company_id, event.source)

        if event.event == "ingest_business_data":
            return await self.ingestion.ingest_business_data(event.company_id, event.metadata)

        request = IngestionRequest(
            company_id=event.company_id,
            bucket=event.bucket,
            folder_path=event.folder_path,
            metadata=event.metadata,
        )
        if event.event == "refresh":
            return await self.ingestion.refresh(request)
        return await self.ingestion.ingest_from_storage(request)

    def describe(self) -> Dict[str, Any]:
        return {"topic": self.topic, "group_id": self.group_id, "running": self.running}

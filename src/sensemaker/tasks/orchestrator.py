"""
Task orchestrator: the request-time half of the task lifecycle.

submit -> queued: normalize the upload, enqueue the task, answer 202
poll:             read the result record (404 until a terminal record exists)
delete:           remove the result and status records

The queue-driven half (processing -> completed | failed) lives in
``sensemaker.tasks.worker`` and ``sensemaker.tasks.processor``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from config.config import SensemakerConfig
from core.errors import InvalidRequestError
from core.logging import LogContext, log_phase
from sensemaker.common.metrics import record_task_submitted
from sensemaker.common.producer import MessageProducer
from sensemaker.ingest.converter import describe_comment, normalize_upload
from sensemaker.schemas.tasks import (
    STATUS_QUEUED,
    CompletedResult,
    FailedResult,
    SensemakeTask,
    generate_task_id,
)
from sensemaker.storage.gateway import ResultStoreGateway

logger = logging.getLogger(__name__)

RESULT_PATH = "/sensemake/result/{task_id}"


@dataclass
class Upload:
    """An uploaded file as received by the HTTP layer."""

    data: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass
class SubmitOptions:
    """Caller-supplied analysis parameters (query string)."""

    api_key: Optional[str] = None
    model: Optional[str] = None
    additional_context: Optional[str] = None
    output_language: Optional[str] = None


class TaskOrchestrator:
    """Accepts uploads as tasks and answers lifecycle queries.

    Configuration, the queue producer and the result store are injected;
    nothing here holds process-wide state.
    """

    def __init__(
        self,
        config: SensemakerConfig,
        producer: MessageProducer,
        gateway: ResultStoreGateway,
    ):
        self.config = config
        self.producer = producer
        self.gateway = gateway
        self.tasks_topic = config.get_topic("tasks")

    def resolve_credentials(self, options: SubmitOptions) -> tuple[str, str]:
        """Pick the API key and model for a submission.

        The caller's model is honoured only when the caller also supplies a
        key; otherwise the configured default model is used.

        Raises:
            InvalidRequestError: No key was supplied or configured
        """
        api_key = options.api_key or self.config.default_api_key
        if not api_key:
            raise InvalidRequestError(
                "OPENROUTER_API_KEY parameter is required", code="Missing API Key"
            )

        if options.api_key and options.model:
            model = options.model
        else:
            model = self.config.default_model
        return api_key, model

    async def submit(self, upload: Optional[Upload], options: SubmitOptions) -> dict[str, Any]:
        """Normalize an upload and enqueue it as a task.

        Returns:
            The 202 response body

        Raises:
            InvalidRequestError: Missing key or file
            UnsupportedFormatError, MissingRequiredColumnsError, EmptyDatasetError:
                The upload cannot be turned into comments
            TransportError: The task could not be enqueued
        """
        api_key, model = self.resolve_credentials(options)
        if upload is None:
            raise InvalidRequestError("File upload is required", code="Missing File")

        with log_phase(logger, "normalize_upload", upload_name=upload.filename):
            parsed = normalize_upload(upload.data, upload.content_type, upload.filename)

        task = SensemakeTask(
            task_id=generate_task_id(),
            comments=parsed.comments,
            model_key=api_key,
            model_name=model,
            additional_context=options.additional_context or None,
            output_language=options.output_language or "en",
        )

        with LogContext(task_id=task.task_id):
            await self.producer.send(
                topic=self.tasks_topic,
                key=task.task_id,
                value=task.to_message_bytes(),
            )
            record_task_submitted(parsed.format)
            logger.info(
                "Task queued",
                extra={
                    "format": parsed.format,
                    "comments_count": len(task.comments),
                    "model_name": model,
                    "output_language": task.output_language,
                },
            )

        return {
            "success": True,
            "taskId": task.task_id,
            "status": STATUS_QUEUED,
            "pollingUrl": RESULT_PATH.format(task_id=task.task_id),
            "commentsCount": len(task.comments),
            "model": model,
            "message": "Task queued for processing. Poll the pollingUrl for the result.",
        }

    async def poll(self, task_id: str) -> Union[CompletedResult, FailedResult]:
        """Return the task's terminal record.

        Raises:
            TaskNotFoundError: No result yet, or unknown id
        """
        return await self.gateway.read_result(task_id)

    async def delete(self, task_id: str) -> dict[str, Any]:
        """Delete the task's records.

        Raises:
            TaskNotFoundError: The result record was already absent
        """
        await self.gateway.delete_task(task_id)
        return {"success": True, "taskId": task_id, "status": "deleted"}

    def preview(self, upload: Optional[Upload]) -> dict[str, Any]:
        """Parse an upload and describe the resulting comments without queueing.

        Raises:
            InvalidRequestError: Missing file
            UnsupportedFormatError, MissingRequiredColumnsError, EmptyDatasetError
        """
        if upload is None:
            raise InvalidRequestError("No file provided in the request", code="Missing File")

        parsed = normalize_upload(upload.data, upload.content_type, upload.filename)
        body: dict[str, Any] = {
            "success": True,
            "fileName": upload.filename,
            "fileSize": len(upload.data),
            "format": parsed.format,
            "detectedFormat": parsed.detected_format,
            "commentsCount": len(parsed.comments),
            "comments": [describe_comment(comment) for comment in parsed.comments],
        }
        if parsed.stats is not None:
            body["stats"] = parsed.stats.to_dict()
        if parsed.warnings:
            body["warnings"] = list(parsed.warnings)
        return body

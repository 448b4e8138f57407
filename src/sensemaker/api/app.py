"""
aiohttp application for the task lifecycle.

Routes:
    POST   /sensemake                  submit an upload (alias /api/sensemake)
    POST   /sensemake/preview          parse an upload without queueing it
    GET    /sensemake/result/{task_id} poll for the terminal record
    DELETE /sensemake/delete/{task_id} remove the task's records
    GET    /health                     liveness
    GET    /api/test                   liveness with a timestamp

Request-time failures render as JSON ``{error, message}`` with a 4xx status;
task-time failures are only visible through polling.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web

from config.config import SensemakerConfig
from core.errors import (
    EmptyDatasetError,
    InvalidRequestError,
    MissingRequiredColumnsError,
    PipelineError,
    TaskNotFoundError,
    UnsupportedFormatError,
)
from core.logging import log_exception
from sensemaker.common.producer import MessageProducer
from sensemaker.schemas.tasks import STATUS_COMPLETED, utc_now
from sensemaker.storage.gateway import ResultStoreGateway, create_gateway
from sensemaker.tasks.orchestrator import SubmitOptions, TaskOrchestrator, Upload

logger = logging.getLogger(__name__)

ORCHESTRATOR_KEY = web.AppKey("orchestrator", TaskOrchestrator)

CLIENT_ERRORS = (
    InvalidRequestError,
    UnsupportedFormatError,
    MissingRequiredColumnsError,
    EmptyDatasetError,
)

STATUS_NOT_FOUND = "not_found"


def error_response(error: PipelineError, status: int) -> web.Response:
    body = {"error": getattr(error, "code", type(error).__name__), "message": error.message}
    if isinstance(error, MissingRequiredColumnsError):
        body["missingColumns"] = error.missing_columns
    return web.json_response(body, status=status)


def submit_options(request: web.Request) -> SubmitOptions:
    query = request.query
    return SubmitOptions(
        api_key=query.get("OPENROUTER_API_KEY") or None,
        model=query.get("OPENROUTER_MODEL") or None,
        additional_context=query.get("additionalContext") or query.get("a") or None,
        output_language=query.get("output_lang") or "en",
    )


async def read_upload(request: web.Request) -> Optional[Upload]:
    """Read the multipart ``file`` field; None when absent."""
    if not request.content_type.startswith("multipart/"):
        return None

    form = await request.post()
    field = form.get("file")
    if not isinstance(field, web.FileField):
        return None

    data = field.file.read()
    return Upload(data=data, filename=field.filename, content_type=field.content_type)


async def handle_submit(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    options = submit_options(request)
    # Credentials are checked before the body is read
    orchestrator.resolve_credentials(options)
    upload = await read_upload(request)
    body = await orchestrator.submit(upload, options)
    return web.json_response(body, status=202)


async def handle_preview(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    upload = await read_upload(request)
    return web.json_response(orchestrator.preview(upload))


async def handle_result(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    task_id = request.match_info["task_id"]
    try:
        record = await orchestrator.poll(task_id)
    except TaskNotFoundError:
        return web.json_response(
            {
                "success": False,
                "taskId": task_id,
                "status": STATUS_NOT_FOUND,
                "message": "Task not found or still being processed",
            },
            status=404,
        )

    status = 200 if record.status == STATUS_COMPLETED else 500
    return web.json_response(record.to_dict(), status=status)


async def handle_delete(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    task_id = request.match_info["task_id"]
    try:
        body = await orchestrator.delete(task_id)
    except TaskNotFoundError as e:
        return error_response(e, 404)
    return web.json_response(body)


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def handle_test(request: web.Request) -> web.Response:
    """Liveness with the service message and current time."""
    return web.json_response(
        {
            "status": "ok",
            "message": "Sensemaker Backend is running",
            "timestamp": utc_now().isoformat(),
        }
    )


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except CLIENT_ERRORS as e:
        logger.warning(
            "Rejected request",
            extra={"path": request.path, "error_code": e.code, "error_message": e.message},
        )
        return error_response(e, 400)
    except TaskNotFoundError as e:
        return error_response(e, 404)
    except PipelineError as e:
        log_exception(logger, e, "Request failed", path=request.path)
        return error_response(e, 500)
    except Exception as e:
        log_exception(logger, e, "Unhandled error in request", path=request.path)
        return web.json_response(
            {"error": "Internal Server Error", "message": str(e)}, status=500
        )


def create_app(
    config: SensemakerConfig,
    orchestrator: TaskOrchestrator,
    on_cleanup=None,
) -> web.Application:
    """Build the application around an already-wired orchestrator."""
    app = web.Application(
        middlewares=[error_middleware],
        client_max_size=config.max_upload_bytes,
    )
    app[ORCHESTRATOR_KEY] = orchestrator

    for path in ("/sensemake", "/api/sensemake"):
        app.router.add_post(path, handle_submit)
    app.router.add_post("/sensemake/preview", handle_preview)
    app.router.add_get("/sensemake/result/{task_id}", handle_result)
    app.router.add_delete("/sensemake/delete/{task_id}", handle_delete)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/api/test", handle_test)

    if on_cleanup is not None:
        app.on_cleanup.append(on_cleanup)
    return app


async def build_app(config: SensemakerConfig) -> web.Application:
    """Wire the producer and result store from configuration."""
    producer = MessageProducer(config, worker_name="api")
    await producer.start()
    gateway: ResultStoreGateway = await create_gateway(config)
    orchestrator = TaskOrchestrator(config, producer, gateway)

    async def close_resources(app: web.Application) -> None:
        await producer.stop()
        await gateway.close()

    return create_app(config, orchestrator, on_cleanup=close_resources)


async def run_api(config: SensemakerConfig, shutdown_event: asyncio.Event) -> None:
    """Serve the API until ``shutdown_event`` is set."""
    app = await build_app(config)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.api_host, config.api_port)
    await site.start()
    logger.info(
        "API listening",
        extra={"host": config.api_host, "port": config.api_port},
    )
    try:
        await shutdown_event.wait()
    finally:
        await runner.cleanup()
        logger.info("API stopped")

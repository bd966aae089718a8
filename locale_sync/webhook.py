"""
Webhook authentication, payload classification and dispatch.

Inbound payloads are turned into one of three event types before anything
else looks at them: ``Ping``, ``TaskClosed`` or ``Unrecognized``.
"""
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Union

from fastapi.responses import JSONResponse

from locale_sync.app_config import AppConfig
from locale_sync.sync_pipeline import SyncPipeline

logger = logging.getLogger(__name__)

SECRET_HEADER = 'x-secret'
TASK_CLOSED_EVENT = 'project.task.closed'


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class TaskClosed:
    task_id: int
    project_id: str
    task_title: str
    project_name: str


@dataclass(frozen=True)
class Unrecognized:
    reason: str


WebhookEvent = Union[Ping, TaskClosed, Unrecognized]


def classify_payload(payload: Any, project_id: str) -> WebhookEvent:
    """Classify a decoded webhook body for the configured project."""
    if isinstance(payload, list):
        if payload and payload[0] == 'ping':
            return Ping()
        return Unrecognized("list payload is not a ping")

    if not isinstance(payload, dict):
        return Unrecognized(f"unexpected payload type {type(payload).__name__}")

    if payload.get('event') != TASK_CLOSED_EVENT:
        return Unrecognized(f"unsupported event {payload.get('event')!r}")

    project = payload.get('project')
    task = payload.get('task')
    if not isinstance(project, dict) or not isinstance(task, dict):
        return Unrecognized("task.closed payload without project or task")
    if str(project.get('id')) != str(project_id):
        return Unrecognized(f"event for foreign project {project.get('id')!r}")

    raw_task_id = task.get('id')
    if isinstance(raw_task_id, bool) or (isinstance(raw_task_id, float) and not raw_task_id.is_integer()):
        return Unrecognized(f"invalid task id {raw_task_id!r}")
    try:
        task_id = int(raw_task_id)
    except (TypeError, ValueError, OverflowError):
        return Unrecognized(f"invalid task id {raw_task_id!r}")

    return TaskClosed(
        task_id=task_id,
        project_id=str(project.get('id')),
        task_title=str(task.get('title') or ''),
        project_name=str(project.get('name') or ''),
    )


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
        return ''
    return value


class WebhookDispatcher:
    """Authenticates webhook deliveries and runs the sync for closed tasks."""

    def __init__(self, config: AppConfig, pipeline: SyncPipeline):
        self.config = config
        self.pipeline = pipeline

    def is_authorized(self, headers: Mapping[str, str]) -> bool:
        supplied = _header(headers, SECRET_HEADER)
        return bool(supplied) and hmac.compare_digest(
            supplied.encode('utf-8'), self.config.webhook_secret.encode('utf-8')
        )

    async def handle(self, headers: Mapping[str, str], raw_body: bytes) -> JSONResponse:
        if not self.is_authorized(headers):
            logger.warning("Rejected webhook delivery with a missing or wrong secret.")
            return JSONResponse({'error': 'Forbidden'}, status_code=403)

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return JSONResponse({'error': 'Invalid JSON'}, status_code=400)

        event = classify_payload(payload, self.config.lokalise_project_id)

        if isinstance(event, Ping):
            logger.info("Webhook ping received.")
            return JSONResponse({'status': 'success'}, status_code=200)

        if isinstance(event, Unrecognized):
            logger.warning("Unhandled webhook payload: %s", event.reason)
            return JSONResponse({'error': 'Unhandled payload'}, status_code=400)

        logger.info(
            "Task closed: #%s '%s' in project '%s' (%s)",
            event.task_id, event.task_title, event.project_name, event.project_id
        )
        try:
            report = await self.pipeline.run(event.task_id)
        except Exception:
            logger.exception("Sync for task %s failed.", event.task_id)
            return JSONResponse({'error': 'Processing failed'}, status_code=500)

        logger.info(
            "Task %s processed: %d uploaded, %d failed.", event.task_id, report.succeeded, report.failed
        )
        return JSONResponse({'status': 'task processed'}, status_code=200)

"""Job submission and notification dispatch endpoints."""

from __future__ import annotations

from typing import Any

from aiohttp import web

from marybot.jobs.models import JobPriority
from marybot.logging import get_logger

log = get_logger("marybot.api.routes.jobs")


async def _read_json(request: web.Request) -> dict[str, Any] | None:
    try:
        data = await request.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


async def handle_schedule_job(request: web.Request) -> web.Response:
    """POST /api/v1/jobs: queue a background job.

    Body: ``{"type", "payload", "priority"?, "delayMs"?}``. Returns 202 with
    the job id.
    """
    manager = request.app["worker_manager"]
    data = await _read_json(request)
    if data is None:
        return web.json_response({"error": "Request body must be a JSON object"}, status=400)

    job_type = data.get("type")
    if not job_type:
        return web.json_response({"error": "type is required"}, status=400)

    payload = data.get("payload", {})
    if not isinstance(payload, dict):
        return web.json_response({"error": "payload must be an object"}, status=400)

    try:
        priority = JobPriority(data.get("priority", JobPriority.NORMAL.value))
    except ValueError:
        return web.json_response({"error": "priority must be high, normal or low"}, status=400)

    delay_ms = data.get("delayMs", 0)
    if not isinstance(delay_ms, int) or delay_ms < 0:
        return web.json_response({"error": "delayMs must be a non-negative integer"}, status=400)

    job_id = await manager.schedule_job(
        str(job_type), payload, priority=priority, delay_ms=delay_ms
    )
    return web.json_response({"jobId": job_id}, status=202)


async def handle_jobs_status(request: web.Request) -> web.Response:
    """GET /api/v1/jobs/status: worker manager counters."""
    manager = request.app["worker_manager"]
    return web.json_response(manager.get_status())


async def handle_dispatch_notifications(request: web.Request) -> web.Response:
    """POST /api/v1/notifications/dispatch: run a notification job in-process.

    Body: ``{"job": {"notificationType", "recipients", "data", "options"}}``.
    Responds with the settled dispatch result.
    """
    dispatcher = request.app["notification_dispatcher"]
    data = await _read_json(request)
    if data is None:
        return web.json_response({"error": "Request body must be a JSON object"}, status=400)

    reply = await dispatcher.handle_message(data)
    log.debug("notification_dispatch_requested", success=reply.get("success"))
    return web.json_response(reply)

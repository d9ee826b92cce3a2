"""Pre-flight checks and scheduling in front of the stream supervisor."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dateutil.tz import tzutc

from .errors import StreamError, ValidationError
from .media import media_kind
from .models import Plan, StreamRequest
from .quota import exhaustion_message, is_exhausted
from .store import UsageDatabase
from .stream_manager import StreamSupervisor, new_session_id

logger = logging.getLogger(__name__)


class QuotaRejected(StreamError):
    """The user's plan does not allow this start right now."""


class StreamService:
    """What the HTTP layer calls: plan checks first, then the supervisor."""

    def __init__(self, supervisor: StreamSupervisor, database: UsageDatabase, scheduler: AsyncIOScheduler | None = None):
        self.supervisor = supervisor
        self.database = database
        self.scheduler = scheduler or AsyncIOScheduler(timezone=tzutc())

    def start_scheduler(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def stop_scheduler(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def preflight(self, request: StreamRequest) -> Plan:
        if not request.files and not request.audio_files:
            raise ValidationError("Select at least one media file.")
        if not request.destination:
            raise ValidationError("RTMP URL is empty.")

        plan = self.database.get_plan_for_user(request.owner_id)
        if plan is None:
            raise ValidationError(f"Unknown user {request.owner_id}.")

        usage = self.database.sync_usage(request.owner_id)
        if is_exhausted(usage, plan):
            raise QuotaRejected(exhaustion_message(plan.limit_type, plan.limit_seconds))

        if len(self.supervisor.list_active(request.owner_id)) >= plan.max_active_streams:
            raise QuotaRejected(f"At most {plan.max_active_streams} streams may run at once on this plan.")

        kinds = {media_kind(path) for path in [*request.files, *request.audio_files]}
        if "video" in kinds and "video" not in plan.allowed_types:
            raise QuotaRejected("This plan only supports audio streams.")
        if "audio" in kinds and "audio" not in plan.allowed_types:
            raise QuotaRejected("This plan does not include audio streams.")
        return plan

    async def start(self, request: StreamRequest) -> str:
        self.preflight(request)
        return await self.supervisor.start(request)

    async def stop(self, user_id: int, session_id: str) -> bool:
        session = self.supervisor.get_session(session_id)
        if session is None or session.owner_id != user_id:
            return False
        return await self.supervisor.stop(session_id)

    def status(self, user_id: int) -> Dict[str, Any]:
        usage = self.database.sync_usage(user_id)
        streams = [stream.as_dict() for stream in self.supervisor.list_active(user_id)]
        return {"active": bool(streams), "streams": streams, "usage_seconds": usage}

    def schedule(self, request: StreamRequest, run_date: dt.datetime) -> str:
        if run_date.tzinfo is None:
            run_date = run_date.replace(tzinfo=tzutc())
        if run_date <= dt.datetime.now(tzutc()):
            raise ValidationError("scheduled_start_time must be in the future.")
        self.preflight(request)

        job = self.scheduler.add_job(
            self._run_scheduled,
            trigger="date",
            run_date=run_date,
            args=[request],
            id=f"{request.owner_id}-{new_session_id()}",
        )
        logger.info("Scheduled stream for user %s at %s", request.owner_id, run_date.isoformat())
        return job.id

    def cancel_scheduled(self, user_id: int, job_id: str) -> bool:
        if not job_id.startswith(f"{user_id}-"):
            return False
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        return True

    def scheduled_jobs(self, user_id: int) -> List[Dict[str, Any]]:
        jobs = []
        for job in self.scheduler.get_jobs():
            if job.id.startswith(f"{user_id}-"):
                run_date = job.trigger.run_date if hasattr(job.trigger, "run_date") else None
                jobs.append({"job_id": job.id, "run_date": run_date.isoformat() if run_date else None})
        return jobs

    async def _run_scheduled(self, request: StreamRequest) -> None:
        try:
            session_id = await self.start(request)
        except StreamError as exc:
            logger.error("Scheduled stream for user %s failed: %s", request.owner_id, exc)
            self.supervisor.events.log("error", f"Scheduled stream failed: {exc}")
            return
        logger.info("Scheduled stream %s started for user %s", session_id, request.owner_id)

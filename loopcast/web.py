"""FastAPI application exposing stream controls and live events."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .config import AppConfig, load_config
from .errors import StartupFailure, StreamError, ValidationError
from .models import StreamRequest
from .notifier import EventPublisher
from .quota import QuotaAccountant
from .reaper import reap_zombies
from .registry import StreamRegistry
from .service import QuotaRejected, StreamService
from .store import UsageDatabase
from .stream_manager import StreamSupervisor

logger = logging.getLogger(__name__)


class StartStreamPayload(BaseModel):
    files: list[str] = Field(default_factory=list, description="Media file paths, played in order.")
    rtmp_url: str = Field(..., description="RTMP destination including the stream key.")
    loop: bool = False
    cover_image: Optional[str] = Field(None, description="Still image shown while audio plays.")
    audio_files: list[str] = Field(default_factory=list, description="Audio playlist replacing a video's soundtrack.")
    title: Optional[str] = None
    description: str = ""


class SchedulePayload(StartStreamPayload):
    scheduled_start_time: dt.datetime


def _to_request(payload: StartStreamPayload, user_id: int) -> StreamRequest:
    return StreamRequest(
        files=payload.files,
        destination=payload.rtmp_url,
        owner_id=user_id,
        loop=payload.loop,
        cover_image=payload.cover_image,
        audio_files=payload.audio_files,
        title=payload.title,
        description=payload.description,
    )


def _http_error(exc: StreamError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, QuotaRejected):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, StartupFailure):
        return HTTPException(status_code=500, detail=f"Engine error: {exc}")
    return HTTPException(status_code=500, detail=str(exc))


def create_app(config: AppConfig | None = None) -> FastAPI:
    config = config or load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    database = UsageDatabase(config.database_path)
    registry = StreamRegistry()
    events = EventPublisher(config.notifier)
    accountant = QuotaAccountant(database, config.quota.sample_interval_seconds)
    supervisor = StreamSupervisor(config, registry, accountant, events)
    service = StreamService(supervisor, database)

    app = FastAPI(title=config.project_name)
    app.state.config = config
    app.state.database = database
    app.state.supervisor = supervisor
    app.state.service = service
    app.state.events = events

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/streams/start")
    async def start_stream(payload: StartStreamPayload, user_id: int = Header(..., alias="X-User-Id")):
        try:
            stream_id = await service.start(_to_request(payload, user_id))
        except StreamError as exc:
            raise _http_error(exc) from exc
        return {"success": True, "message": "Streaming started.", "stream_id": stream_id}

    @app.post("/streams/stop")
    async def stop_stream(stream_id: str = Body(..., embed=True), user_id: int = Header(..., alias="X-User-Id")):
        return {"success": await service.stop(user_id, stream_id)}

    @app.get("/streams")
    async def list_streams(user_id: int = Header(..., alias="X-User-Id")) -> Dict[str, Any]:
        status = service.status(user_id)
        status["scheduled"] = service.scheduled_jobs(user_id)
        return status

    @app.get("/streams/{stream_id}")
    async def stream_status(stream_id: str, user_id: int = Header(..., alias="X-User-Id")):
        session = supervisor.get_session(stream_id)
        if session is None or session.owner_id != user_id:
            raise HTTPException(status_code=404, detail="Unknown stream")
        return {
            "id": session.id,
            "name": session.display_name,
            "platform": session.platform_label,
            "mode": session.mode.value,
            "state": session.state.value,
            "started_at": session.started_at.isoformat() if session.started_at else None,
            "log_tail": session.log[-10:],
        }

    @app.post("/streams/schedule")
    async def schedule_stream(payload: SchedulePayload, user_id: int = Header(..., alias="X-User-Id")):
        try:
            job_id = service.schedule(_to_request(payload, user_id), payload.scheduled_start_time)
        except StreamError as exc:
            raise _http_error(exc) from exc
        return {"job_id": job_id}

    @app.delete("/streams/schedule/{job_id}")
    async def cancel_schedule(job_id: str, user_id: int = Header(..., alias="X-User-Id")):
        if not service.cancel_scheduled(user_id, job_id):
            raise HTTPException(status_code=404, detail="Unknown job")
        return {"cancelled": job_id}

    @app.websocket("/events")
    async def event_stream(websocket: WebSocket) -> None:
        await websocket.accept()
        queue = events.subscribe()

        async def forward() -> None:
            while True:
                await websocket.send_json(await queue.get())

        async def watch() -> None:
            # Clients never send anything; this only notices the disconnect.
            while True:
                await websocket.receive_text()

        tasks = [asyncio.create_task(forward()), asyncio.create_task(watch())]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            events.unsubscribe(queue)
            for task in tasks:
                task.cancel()
            for result in await asyncio.gather(*tasks, return_exceptions=True):
                if isinstance(result, Exception) and not isinstance(result, WebSocketDisconnect):
                    logger.debug("Event socket closed: %s", result)

    @app.on_event("startup")
    async def startup_event() -> None:
        database.initialize()
        os.makedirs(config.scratch_dir, exist_ok=True)
        if config.reap_on_startup:
            reap_zombies(config.encoder.process_name, registry)
        service.start_scheduler()
        logger.info("%s started.", config.project_name)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        service.stop_scheduler()
        await supervisor.shutdown()
        events.close()
        database.close()

    return app


app = create_app()

"""Supervise ffmpeg processes publishing user media to RTMP endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import logging
import random
import shlex
import string
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from .config import AppConfig
from .errors import StartupFailure, ValidationError
from .media import MediaProber, classify
from .models import ActiveStream, SessionState, StreamRequest, StreamSession, platform_label
from .notifier import STATS, STREAM_ENDED, STREAM_STARTED, EventPublisher
from .pipeline import PipelineCompiler
from .playlist import PlaylistBuilder, remove_files
from .progress import ProgressParser, ProgressSnapshot
from .quota import QuotaAccountant, exhaustion_message
from .registry import StreamRegistry

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
STDERR_TAIL = 20
# ffmpeg can print very long stderr lines (codec dumps, SDP blobs).
STREAM_LIMIT = 1024 * 1024


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def new_session_id() -> str:
    """Millisecond timestamp plus a random suffix, both base 36."""
    suffix = "".join(random.choices(_BASE36, k=5))
    return _base36(int(time.time() * 1000)) + suffix


@dataclass(frozen=True)
class ProcessExited:
    returncode: int


class StreamSupervisor:
    """Owns every transcoder process from spawn to cleanup.

    Each session gets an inbox fed by a pump task reading the process output.
    A single supervising task per session drains that inbox, so progress,
    quota stops and process exit are handled strictly in order.
    """

    def __init__(
        self,
        config: AppConfig,
        registry: StreamRegistry,
        accountant: QuotaAccountant,
        events: EventPublisher,
        prober: Optional[MediaProber] = None,
    ):
        encoder = config.encoder
        self.config = config
        self.registry = registry
        self.accountant = accountant
        self.events = events
        self.prober = prober or MediaProber(encoder.ffprobe_path, encoder.probe_timeout)
        self.playlists = PlaylistBuilder(
            config.scratch_dir,
            coverage_hours=encoder.loop_coverage_hours,
            max_entries=encoder.max_manifest_entries,
            fallback_repeat_count=encoder.fallback_repeat_count,
        )
        self.compiler = PipelineCompiler(encoder, self.playlists, self.prober)
        self._live: Dict[str, StreamSession] = {}
        self._tasks: set = set()

    async def start(self, request: StreamRequest) -> str:
        """Spawn a pipeline and return its session id once ffmpeg reports progress."""
        if not request.destination:
            raise ValidationError("RTMP destination is empty.")
        classification = classify(request.files, request.audio_files, request.cover_image)
        session_id = new_session_id()
        # Probing and manifest writing block on disk and ffprobe.
        spec = await asyncio.to_thread(
            self.compiler.compile, session_id, classification, request.destination, request.loop
        )

        loop = asyncio.get_running_loop()
        session = StreamSession(
            id=session_id,
            owner_id=request.owner_id,
            mode=spec.mode,
            destination=request.destination,
            display_name=request.title or f"Stream {session_id[:4]}",
            platform_label=platform_label(request.destination),
            description=request.description,
            input_descriptors=list(spec.artifacts),
            inbox=asyncio.Queue(),
            activated=loop.create_future(),
            finished=asyncio.Event(),
        )
        cmd = spec.command(self.config.encoder.ffmpeg_path)
        logger.debug("Launching ffmpeg for %s: %s", session_id, shlex.join(cmd))
        session.append_log(f"Launching {spec.mode.value} pipeline at {spec.fps} fps, keyframe every {spec.keyframe_interval} frames.")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            remove_files(session.owned_files)
            raise StartupFailure(f"Could not launch {self.config.encoder.ffmpeg_path}: {exc}") from exc

        session.process = process
        self._live[session_id] = session
        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL)
        self._spawn(self._pump(session, stderr_tail))
        self._spawn(self._supervise(session, stderr_tail))

        timeout = self.config.encoder.startup_timeout
        try:
            await asyncio.wait_for(asyncio.shield(session.activated), timeout=timeout)
        except asyncio.TimeoutError:
            session.activated.cancel()
            self._kill(session)
            await session.finished.wait()
            raise StartupFailure(f"ffmpeg produced no output within {timeout}s", list(stderr_tail)) from None
        return session_id

    async def stop(self, session_id: str, reason: str = "manual stop") -> bool:
        """Kill a live session and wait for its cleanup. False if it is not live."""
        session = self.registry.begin_stop(session_id, reason)
        if session is None:
            return False
        session.append_log(f"Stopping ffmpeg process ({reason}).")
        self._kill(session)
        await session.finished.wait()
        return True

    def observe_progress(self, session_id: str, snapshot: ProgressSnapshot) -> bool:
        """Queue a progress tick for a session. Unknown sessions are ignored."""
        session = self._live.get(session_id)
        if session is None or session.inbox is None:
            return False
        session.inbox.put_nowait(snapshot)
        return True

    def list_active(self, owner_id: int) -> List[ActiveStream]:
        return self.registry.list_by_owner(owner_id)

    def get_session(self, session_id: str) -> Optional[StreamSession]:
        return self.registry.get(session_id)

    async def shutdown(self) -> None:
        for session in list(self._live.values()):
            self.registry.begin_stop(session.id, "shutdown")
            self._kill(session)
        waiters = [session.finished.wait() for session in list(self._live.values())]
        if waiters:
            await asyncio.gather(*waiters)

    # -- per-session tasks -------------------------------------------------

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _pump(self, session: StreamSession, stderr_tail: Deque[str]) -> None:
        process = session.process
        parser = ProgressParser()

        async def read_progress() -> None:
            async for raw in process.stdout:
                snapshot = parser.feed(raw.decode("utf-8", errors="replace"))
                if snapshot is not None:
                    session.inbox.put_nowait(snapshot)

        async def read_errors() -> None:
            while True:
                try:
                    raw = await process.stderr.readline()
                except ValueError:
                    logger.debug("Skipped an oversized ffmpeg stderr line for %s", session.id)
                    continue
                if not raw:
                    return
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    stderr_tail.append(line)
                    logger.debug("ffmpeg[%s]: %s", session.id, line)

        try:
            await asyncio.gather(read_progress(), read_errors())
        except Exception as exc:  # noqa: BLE001
            logger.error("Lost ffmpeg output for %s: %s", session.id, exc)
            self._kill(session)
        returncode = await process.wait()
        session.inbox.put_nowait(ProcessExited(returncode))

    async def _supervise(self, session: StreamSession, stderr_tail: Deque[str]) -> None:
        try:
            while True:
                message = await session.inbox.get()
                if isinstance(message, ProcessExited):
                    self._finish(session, message.returncode, stderr_tail)
                    return
                try:
                    await self._on_progress(session, message)
                except Exception:  # noqa: BLE001
                    logger.exception("Progress handling failed for %s", session.id)
        finally:
            if not session.finished.is_set():
                self._kill(session)
                self.registry.remove(session.id)
                remove_files(session.owned_files)
                self._live.pop(session.id, None)
                session.state = SessionState.TERMINATED
                session.finished.set()

    async def _on_progress(self, session: StreamSession, snapshot: ProgressSnapshot) -> None:
        if session.state is SessionState.STARTING:
            if session.activated.done():
                return
            self._activate(session)
        if session.state is not SessionState.ACTIVE:
            return

        delta = self.accountant.accountable_delta(session, snapshot.elapsed)
        if not delta:
            return
        # The usage store is a blocking database.
        result = await asyncio.to_thread(self.accountant.charge, session.owner_id, delta)
        stats = {
            "sessionId": session.id,
            "elapsed": snapshot.elapsed,
            "elapsedMarker": snapshot.timemark,
            "bitrate": snapshot.bitrate_label,
        }
        if result is not None:
            stats["usageRemaining"] = result.remaining_seconds
        self.events.publish(STATS, stats)

        if result is not None and result.exhausted and self.registry.begin_stop(session.id, "quota exhausted"):
            message = exhaustion_message(result.limit_type, result.limit_seconds)
            session.append_log(message)
            logger.info("Stopping stream %s for user %s: %s", session.id, session.owner_id, message)
            self.events.log("error", message, session.id)
            self._kill(session)

    def _activate(self, session: StreamSession) -> None:
        session.started_at = dt.datetime.now(dt.timezone.utc)
        self.registry.add(session)
        session.append_log("Stream started.")
        logger.info("Stream %s active (%s to %s)", session.id, session.mode.value, session.platform_label)
        self.events.publish(STREAM_STARTED, {"sessionId": session.id})
        self.events.log("start", f"Stream {session.id} started.", session.id)
        session.activated.set_result(session.id)

    def _finish(self, session: StreamSession, returncode: int, stderr_tail: Deque[str]) -> None:
        session.returncode = returncode
        remove_files(session.owned_files)
        self._live.pop(session.id, None)

        if session.state is SessionState.STARTING:
            session.state = SessionState.TERMINATED
            message = f"ffmpeg exited with code {returncode} before the stream started"
            logger.error("Stream %s failed to start: %s", session.id, stderr_tail[-1] if stderr_tail else message)
            if not session.activated.done():
                session.activated.set_exception(StartupFailure(message, list(stderr_tail)))
            session.finished.set()
            return

        self.registry.remove(session.id)
        session.state = SessionState.TERMINATED
        if session.manual_stop_requested:
            logger.info("Stream %s stopped (%s)", session.id, session.stop_reason)
            self.events.log("end", f"Stream {session.id} stopped.", session.id)
        elif returncode == 0:
            logger.info("Stream %s reached the end of its playlist", session.id)
            self.events.log("end", f"Stream {session.id} ended.", session.id)
        else:
            reason = stderr_tail[-1] if stderr_tail else f"exit code {returncode}"
            logger.error("Stream %s crashed: %s", session.id, reason)
            self.events.log("error", f"Stream {session.id} crashed: {reason}", session.id)
        session.append_log(f"ffmpeg exited with code {returncode}.")
        self.events.publish(STREAM_ENDED, {"sessionId": session.id})
        session.finished.set()

    @staticmethod
    def _kill(session: StreamSession) -> None:
        process = session.process
        if process is None or process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.kill()

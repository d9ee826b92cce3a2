"""Domain models for streaming sessions."""

from __future__ import annotations

import asyncio
import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

LOG_TAIL_SIZE = 200


class PipelineMode(Enum):
    VIDEO = "video"
    STATIC_AUDIO = "static_audio"
    SLIDESHOW = "slideshow"
    HYBRID = "hybrid"


class SessionState(Enum):
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Plan:
    id: int
    name: str
    max_storage_mb: int
    allowed_types: frozenset
    max_active_streams: int
    daily_limit_hours: int
    limit_type: str = "daily"

    @property
    def limit_seconds(self) -> int:
        return self.daily_limit_hours * 3600


@dataclass
class User:
    id: int
    username: str
    plan_id: int
    usage_seconds: int = 0
    last_usage_reset: Optional[str] = None


@dataclass
class StreamRequest:
    files: List[str]
    destination: str
    owner_id: int
    loop: bool = False
    cover_image: Optional[str] = None
    audio_files: List[str] = field(default_factory=list)
    title: Optional[str] = None
    description: str = ""


def platform_label(destination: str) -> str:
    """Cosmetic platform name derived from the RTMP destination."""
    lowered = destination.lower()
    if "youtube" in lowered:
        return "YouTube"
    if "facebook" in lowered:
        return "Facebook"
    if "twitch" in lowered:
        return "Twitch"
    return "Custom"


@dataclass
class StreamSession:
    id: str
    owner_id: int
    mode: PipelineMode
    destination: str
    display_name: str
    platform_label: str
    description: str = ""
    process: Optional[asyncio.subprocess.Process] = field(default=None, repr=False)
    input_descriptors: List[str] = field(default_factory=list)
    auxiliary_resources: List[str] = field(default_factory=list)
    started_at: Optional[dt.datetime] = None
    state: SessionState = SessionState.STARTING
    last_accounted_offset: float = 0.0
    manual_stop_requested: bool = False
    stop_reason: Optional[str] = None
    returncode: Optional[int] = None
    log: List[str] = field(default_factory=list)
    inbox: Optional[asyncio.Queue] = field(default=None, repr=False)
    activated: Optional[asyncio.Future] = field(default=None, repr=False)
    finished: Optional[asyncio.Event] = field(default=None, repr=False)

    def append_log(self, message: str) -> None:
        timestamp = dt.datetime.now(dt.timezone.utc).isoformat()
        self.log.append(f"[{timestamp}] {message}")
        if len(self.log) > LOG_TAIL_SIZE:
            del self.log[: len(self.log) - LOG_TAIL_SIZE]

    @property
    def owned_files(self) -> List[str]:
        return [*self.input_descriptors, *self.auxiliary_resources]


@dataclass(frozen=True)
class ActiveStream:
    """Read-only projection of a live session for status display."""

    id: str
    platform_label: str
    display_name: str
    started_at: Optional[dt.datetime]
    state: str = SessionState.ACTIVE.value

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform_label,
            "name": self.display_name,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "state": self.state,
        }

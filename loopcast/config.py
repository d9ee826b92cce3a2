"""Configuration helpers for the loopcast streaming service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _bitrate_kbps(bitrate: str) -> int:
    return int(bitrate.lower().rstrip("k"))


@dataclass
class EncoderConfig:
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    width: int = 1280
    height: int = 720
    # Real video needs full motion; covers and slides barely change.
    motion_fps: int = 30
    static_fps: int = 20
    motion_video_bitrate: str = "2500k"
    static_video_bitrate: str = "1500k"
    audio_bitrate: str = "128k"
    audio_sample_rate: int = 44100
    preset: str = "veryfast"
    slide_duration: int = 10
    probe_timeout: int = 10
    startup_timeout: int = 30
    loop_coverage_hours: int = 72
    max_manifest_entries: int = 20000
    fallback_repeat_count: int = 500

    def keyframe_interval(self, fps: int) -> int:
        """Frames between keyframes: always two seconds of output."""
        return fps * 2

    def bufsize(self, bitrate: str) -> str:
        return f"{_bitrate_kbps(bitrate) * 2}k"

    @property
    def process_name(self) -> str:
        """Executable name the reaper matches against."""
        name = os.path.basename(self.ffmpeg_path)
        if name.lower().endswith(".exe"):
            name = name[:-4]
        return name


@dataclass
class QuotaConfig:
    sample_interval_seconds: int = 5


@dataclass
class NotifierConfig:
    webhook_url: Optional[str] = None
    webhook_timeout: int = 10
    subscriber_queue_size: int = 256


@dataclass
class AppConfig:
    project_name: str = "Loopcast"
    scratch_dir: str = "data/scratch"
    database_path: str = "data/loopcast.sqlite"
    log_level: str = "INFO"
    reap_on_startup: bool = True
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_config() -> AppConfig:
    """Load configuration from environment variables."""
    encoder = EncoderConfig(
        ffmpeg_path=os.getenv("LOOPCAST_FFMPEG", "ffmpeg"),
        ffprobe_path=os.getenv("LOOPCAST_FFPROBE", "ffprobe"),
        width=_env_int("LOOPCAST_WIDTH", 1280),
        height=_env_int("LOOPCAST_HEIGHT", 720),
        motion_fps=_env_int("LOOPCAST_MOTION_FPS", 30),
        static_fps=_env_int("LOOPCAST_STATIC_FPS", 20),
        motion_video_bitrate=os.getenv("LOOPCAST_MOTION_BITRATE", "2500k"),
        static_video_bitrate=os.getenv("LOOPCAST_STATIC_BITRATE", "1500k"),
        audio_bitrate=os.getenv("LOOPCAST_AUDIO_BITRATE", "128k"),
        preset=os.getenv("LOOPCAST_PRESET", "veryfast"),
        slide_duration=_env_int("LOOPCAST_SLIDE_DURATION", 10),
        probe_timeout=_env_int("LOOPCAST_PROBE_TIMEOUT", 10),
        startup_timeout=_env_int("LOOPCAST_STARTUP_TIMEOUT", 30),
        loop_coverage_hours=_env_int("LOOPCAST_LOOP_COVERAGE_HOURS", 72),
    )
    for bitrate in (encoder.motion_video_bitrate, encoder.static_video_bitrate, encoder.audio_bitrate):
        _bitrate_kbps(bitrate)

    notifier = NotifierConfig(
        webhook_url=os.getenv("NOTIFY_WEBHOOK_URL"),
        webhook_timeout=_env_int("NOTIFY_WEBHOOK_TIMEOUT", 10),
    )

    return AppConfig(
        project_name=os.getenv("PROJECT_NAME", "Loopcast"),
        scratch_dir=os.getenv("LOOPCAST_SCRATCH_DIR", "data/scratch"),
        database_path=os.getenv("LOOPCAST_DATABASE", "data/loopcast.sqlite"),
        log_level=os.getenv("LOOPCAST_LOG_LEVEL", "INFO"),
        reap_on_startup=_env_bool("LOOPCAST_REAP_ON_STARTUP", True),
        encoder=encoder,
        quota=QuotaConfig(sample_interval_seconds=_env_int("LOOPCAST_QUOTA_SAMPLE_SECONDS", 5)),
        notifier=notifier,
    )

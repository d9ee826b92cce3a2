"""Media classification and ffprobe helpers."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .errors import ValidationError
from .models import PipelineMode

logger = logging.getLogger(__name__)

AUDIO_EXTS = frozenset({".mp3", ".aac", ".wav", ".m4a", ".flac", ".ogg"})
IMAGE_EXTS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"})


def media_kind(path: str) -> str:
    """Return ``audio``, ``image`` or ``video`` based on the file extension."""
    ext = os.path.splitext(path)[1].lower()
    if ext in AUDIO_EXTS:
        return "audio"
    if ext in IMAGE_EXTS:
        return "image"
    return "video"


@dataclass
class Classification:
    mode: PipelineMode
    videos: List[str] = field(default_factory=list)
    audios: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    cover_image: Optional[str] = None


def classify(
    files: Sequence[str],
    audio_files: Optional[Sequence[str]] = None,
    cover_image: Optional[str] = None,
) -> Classification:
    """Decide which pipeline mode drives a set of inputs.

    ``files`` is the main media list; ``audio_files`` is an optional separate
    audio playlist that replaces the soundtrack of a single driving video.
    """
    audio_files = list(audio_files or [])
    if not files and not audio_files:
        raise ValidationError("At least one media file is required.")

    videos = [f for f in files if media_kind(f) == "video"]
    audios = [f for f in files if media_kind(f) == "audio"]
    images = [f for f in files if media_kind(f) == "image"]

    if audio_files:
        not_audio = [f for f in audio_files if media_kind(f) != "audio"]
        if not_audio:
            raise ValidationError(f"Audio playlist contains non-audio files: {', '.join(not_audio)}")
        if len(videos) == 1:
            return Classification(PipelineMode.HYBRID, videos=videos, audios=audio_files, images=images)
        if videos:
            raise ValidationError("A separate audio playlist needs exactly one driving video.")
        audios = [*audios, *audio_files]

    if videos:
        ignored = len(audios) + len(images)
        if ignored:
            logger.warning("Ignoring %d non-video inputs in video mode.", ignored)
        return Classification(PipelineMode.VIDEO, videos=videos)

    if audios:
        cover = cover_image or (images[0] if images else None)
        return Classification(PipelineMode.STATIC_AUDIO, audios=audios, images=images, cover_image=cover)

    return Classification(PipelineMode.SLIDESHOW, images=images)


class MediaProber:
    """Blocking ffprobe queries, each bounded by a timeout."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: int = 10):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def _probe(self, path: str, *entries: str) -> Optional[dict]:
        cmd = [
            self.ffprobe_path,
            "-hide_banner",
            "-loglevel", "error",
            *entries,
            "-print_format", "json",
            path,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)  # noqa: S603
        except subprocess.TimeoutExpired:
            logger.warning("ffprobe timed out after %ss for %s", self.timeout, path)
            return None
        except OSError as exc:
            logger.warning("ffprobe could not run for %s: %s", path, exc)
            return None
        if result.returncode != 0:
            logger.warning("ffprobe failed for %s: %s", path, result.stderr.strip() or result.returncode)
            return None
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            logger.warning("Unreadable ffprobe output for %s: %s", path, exc)
            return None

    def has_audio(self, path: str) -> bool:
        """Whether ``path`` carries a decodable audio stream. Any failure means no."""
        info = self._probe(path, "-select_streams", "a", "-show_entries", "stream=codec_type")
        if not info:
            return False
        return any(stream.get("codec_type") == "audio" for stream in info.get("streams", []))

    def duration(self, path: str) -> Optional[float]:
        info = self._probe(path, "-show_entries", "format=duration")
        if not info:
            return None
        try:
            value = float(info.get("format", {}).get("duration", 0))
        except (TypeError, ValueError):
            return None
        return value if value > 0 else None

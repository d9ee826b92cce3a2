"""Parse the key=value progress blocks ffmpeg writes with ``-progress``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


def parse_timemark(timemark: str) -> float:
    """``HH:MM:SS.ffffff`` to seconds. Unparseable marks count as zero."""
    try:
        hours, minutes, seconds = timemark.strip().split(":")
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    except (ValueError, AttributeError):
        return 0.0


def format_timemark(seconds: float) -> str:
    seconds = max(0.0, seconds)
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class ProgressSnapshot:
    elapsed: float
    bitrate: Optional[str] = None
    speed: Optional[str] = None
    finished: bool = False

    @property
    def timemark(self) -> str:
        return format_timemark(self.elapsed)

    @property
    def bitrate_label(self) -> str:
        if not self.bitrate or self.bitrate == "N/A":
            return "N/A"
        try:
            return f"{round(float(self.bitrate.replace('kbits/s', '')))} kbps"
        except ValueError:
            return self.bitrate


class ProgressParser:
    """Accumulates lines until a ``progress=`` terminator completes a block."""

    def __init__(self) -> None:
        self._block: Dict[str, str] = {}

    def feed(self, line: str) -> Optional[ProgressSnapshot]:
        line = line.strip()
        if not line or "=" not in line:
            return None
        key, value = line.split("=", 1)
        key, value = key.strip(), value.strip()
        if key != "progress":
            self._block[key] = value
            return None

        block, self._block = self._block, {}
        return ProgressSnapshot(
            elapsed=self._elapsed(block),
            bitrate=block.get("bitrate"),
            speed=block.get("speed"),
            finished=value == "end",
        )

    @staticmethod
    def _elapsed(block: Dict[str, str]) -> float:
        for key in ("out_time_us", "out_time_ms"):
            raw = block.get(key)
            if raw and raw != "N/A":
                try:
                    return max(0.0, int(raw) / 1_000_000)
                except ValueError:
                    continue
        return parse_timemark(block.get("out_time", ""))

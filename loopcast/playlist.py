"""
Concat manifests for the transcoder's concat demuxer.

Loops over several files are expressed by repeating the file list inside the
manifest, never by rewinding the concatenated input with a native loop flag:
each wrap of a rewound concat input restarts timestamps and RTMP ingest
servers drop the connection on the regression. The list is repeated enough
times to cover ``coverage_hours`` of continuous playback. When that cannot be
guaranteed (unknown durations, or the entry cap cuts the repetitions short) the
manifest is flagged so the input is also rewound once it runs out.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import ValidationError

logger = logging.getLogger(__name__)

MANIFEST_HEADER = "ffconcat version 1.0"


def quote_path(path: str) -> str:
    """Absolute path quoted for a concat manifest ``file`` directive."""
    absolute = os.path.abspath(path)
    return "'" + absolute.replace("'", "'\\''") + "'"


def existing_files(files: Sequence[str]) -> List[str]:
    present = []
    for path in files:
        if os.path.isfile(path):
            present.append(path)
        else:
            logger.warning("Dropping missing input %s", path)
    return present


@dataclass
class Manifest:
    path: str
    files: List[str]
    repetitions: int
    entries: int
    rewind: bool = False


class PlaylistBuilder:
    """Writes one manifest per session and role into the scratch directory."""

    def __init__(
        self,
        scratch_dir: str,
        coverage_hours: int = 72,
        max_entries: int = 20000,
        fallback_repeat_count: int = 500,
    ):
        self.scratch_dir = scratch_dir
        self.coverage_seconds = coverage_hours * 3600
        self.max_entries = max_entries
        self.fallback_repeat_count = fallback_repeat_count

    def manifest_path(self, session_id: str, role: str) -> str:
        return os.path.join(self.scratch_dir, f"{session_id}_{role}.txt")

    def repetitions(self, file_count: int, durations: Optional[Sequence[Optional[float]]] = None) -> int:
        """How many times the file list is written out for a looping manifest."""
        if _known(durations, file_count):
            repeats = math.ceil(self.coverage_seconds / sum(durations))
        else:
            repeats = self.fallback_repeat_count
        ceiling = max(1, self.max_entries // max(1, file_count))
        return max(1, min(repeats, ceiling))

    def covers(self, repeats: int, durations: Optional[Sequence[Optional[float]]], file_count: int) -> bool:
        """Whether ``repeats`` passes over the list reach the coverage target."""
        if not _known(durations, file_count):
            return False
        return repeats * sum(durations) >= self.coverage_seconds

    def build(
        self,
        session_id: str,
        role: str,
        files: Sequence[str],
        loop: bool,
        durations: Optional[Sequence[Optional[float]]] = None,
    ) -> Manifest:
        """Write a gapless concat manifest for ``files``.

        Missing files are dropped; if nothing is left a ValidationError is
        raised before anything touches the disk.
        """
        present = existing_files(files)
        if not present:
            raise ValidationError(f"None of the {role} files exist on disk.")
        if durations is not None and len(present) != len(files):
            lookup = dict(zip(files, durations))
            durations = [lookup.get(path) for path in present]

        repeats = self.repetitions(len(present), durations) if loop else 1
        rewind = loop and not self.covers(repeats, durations, len(present))
        lines = [MANIFEST_HEADER]
        block = [f"file {quote_path(path)}" for path in present]
        for _ in range(repeats):
            lines.extend(block)
        return self._write(session_id, role, present, repeats, lines, rewind)

    def build_slideshow(
        self,
        session_id: str,
        images: Sequence[str],
        loop: bool,
        slide_duration: int,
    ) -> Manifest:
        """Manifest showing each image for ``slide_duration`` seconds."""
        present = existing_files(images)
        if not present:
            raise ValidationError("None of the slideshow images exist on disk.")

        repeats = self.repetitions(len(present), [slide_duration] * len(present)) if loop else 1
        rewind = loop and not self.covers(repeats, [slide_duration] * len(present), len(present))
        lines = [MANIFEST_HEADER]
        block = []
        for path in present:
            block.append(f"file {quote_path(path)}")
            block.append(f"duration {slide_duration}")
        for _ in range(repeats):
            lines.extend(block)
        # The demuxer ignores the duration of the final entry unless the file is listed again.
        lines.append(f"file {quote_path(present[-1])}")
        return self._write(session_id, "slides", present, repeats, lines, rewind)

    def _write(
        self, session_id: str, role: str, files: List[str], repeats: int, lines: List[str], rewind: bool = False
    ) -> Manifest:
        os.makedirs(self.scratch_dir, exist_ok=True)
        path = self.manifest_path(session_id, role)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines))
            handle.write("\n")
        entries = sum(1 for line in lines if line.startswith("file "))
        if rewind:
            logger.info("Manifest %s may run out before %ss, rewinding it at the end", path, self.coverage_seconds)
        logger.debug("Wrote manifest %s (%d files x %d)", path, len(files), repeats)
        return Manifest(path=path, files=files, repetitions=repeats, entries=entries, rewind=rewind)


def remove_files(paths: Sequence[str]) -> None:
    """Delete scratch files; already-missing files are not an error."""
    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.error("Failed to remove scratch file %s: %s", path, exc)


def _known(durations: Optional[Sequence[Optional[float]]], file_count: int) -> bool:
    return bool(durations) and len(durations) == file_count and all(d and d > 0 for d in durations)

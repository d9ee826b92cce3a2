"""Error taxonomy for stream orchestration."""

from __future__ import annotations

from typing import Sequence


class StreamError(Exception):
    """Base class for errors surfaced synchronously to a Start caller."""


class ValidationError(StreamError):
    """Bad request: no destination, no readable inputs, or an unsupported mix of inputs."""


class StartupFailure(StreamError):
    """The transcoder exited or stalled before producing any output."""

    def __init__(self, message: str, stderr_tail: Sequence[str] = ()):
        self.stderr_tail = list(stderr_tail)
        if self.stderr_tail:
            message = f"{message}: {self.stderr_tail[-1]}"
        super().__init__(message)

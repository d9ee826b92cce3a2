"""Kill transcoder processes orphaned by a previous run of the service."""

from __future__ import annotations

import logging
import os
from typing import Optional

import psutil

from .registry import StreamRegistry

logger = logging.getLogger(__name__)


def _matches(process: psutil.Process, process_name: str) -> bool:
    name = (process.info.get("name") or "").lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name == process_name.lower()


def reap_zombies(process_name: str, registry: Optional[StreamRegistry] = None) -> int:
    """Kill every process named ``process_name`` and empty the registry.

    Meant to run once at boot, before any session can start: sessions from a
    previous run cannot be recovered, so whatever is still publishing is killed.
    """
    killed = 0
    own_pid = os.getpid()
    for process in psutil.process_iter(["pid", "name"]):
        if process.info.get("pid") == own_pid or not _matches(process, process_name):
            continue
        try:
            process.kill()
            killed += 1
            logger.warning("Killed orphaned %s process %s", process_name, process.info.get("pid"))
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as exc:
            logger.error("Not allowed to kill %s process %s: %s", process_name, process.info.get("pid"), exc)

    if registry is not None:
        registry.clear()
    logger.info("Zombie reaper finished, %d %s processes killed", killed, process_name)
    return killed

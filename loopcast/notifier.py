"""Fire-and-forget event publishing for stream lifecycle updates."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import requests

from .config import NotifierConfig

logger = logging.getLogger(__name__)

LOG = "log"
STATS = "stats"
STREAM_STARTED = "stream_started"
STREAM_ENDED = "stream_ended"


class EventPublisher:
    """Push events to websocket subscribers and an optional webhook.

    Nothing is acknowledged or retried; consumers must tolerate gaps and duplicates.
    """

    def __init__(self, config: Optional[NotifierConfig] = None):
        self.config = config or NotifierConfig()
        self._subscribers: List[asyncio.Queue] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.config.webhook_url:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="webhook")

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.subscriber_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        message = {"event": event, "data": data}
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.debug("Dropping %s event for a slow subscriber", event)
        if self._executor is not None:
            self._executor.submit(self._send_webhook, message)

    def log(self, kind: str, message: str, session_id: Optional[str] = None) -> None:
        self.publish(LOG, {"type": kind, "message": message, "sessionId": session_id})

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def close(self, wait: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def _send_webhook(self, message: Dict[str, Any]) -> None:
        try:
            response = requests.post(self.config.webhook_url, json=message, timeout=self.config.webhook_timeout)
            response.raise_for_status()
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to send webhook: %s", exc)

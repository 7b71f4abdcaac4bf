"""Provider capability interfaces used by the job orchestrator.

A provider turns a PNG capture plus a prompt into one or more encoded result
images. Blocking HTTP work is pushed to a worker thread with
:func:`asyncio.to_thread`, so every network round trip is an ``await`` on the
event loop and canvas state is only touched between them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum

from compositor.core.errors import JobTimeoutError, ProviderError, TransientPollError


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_POLL_TIMEOUT = 180.0


class PollStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PollResult:
    status: PollStatus
    output_url: str | None = None
    error: str | None = None


class ImageProvider:
    """Base class for external image edit/generate services."""

    name = ""
    label = ""

    def __init__(self, api_key: str = "", session=None):
        self.api_key = (api_key or "").strip()
        self.session = session

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def require_key(self) -> None:
        if not self.is_configured:
            raise ProviderError(f"API key is missing for {self.label or self.name}.")

    async def edit(self, image_png: bytes, prompt: str, width: int, height: int) -> list[bytes]:
        raise NotImplementedError

    async def generate(self, prompt: str) -> list[bytes]:
        raise NotImplementedError


class PollingProvider(ImageProvider):
    """Provider with upload, submit and poll-until-done semantics.

    Subclasses implement the blocking wire calls. ``sleep`` and ``clock`` are
    attributes so tests can run the loop without waiting.
    """

    poll_interval = DEFAULT_POLL_INTERVAL
    poll_timeout = DEFAULT_POLL_TIMEOUT

    def __init__(self, api_key: str = "", session=None):
        super().__init__(api_key, session=session)
        self.sleep = asyncio.sleep
        self.clock = time.monotonic

    # Blocking wire calls --------------------------------------------------
    def upload_binary(self, data: bytes) -> str:
        raise NotImplementedError

    def submit_edit(self, image_url: str, prompt: str, size: tuple[int, int]) -> str:
        raise NotImplementedError

    def submit_generate(self, prompt: str) -> str:
        raise NotImplementedError

    def poll_result(self, request_id: str) -> PollResult:
        raise NotImplementedError

    def download(self, url: str) -> bytes:
        raise NotImplementedError

    def target_size(self, width: int, height: int) -> tuple[int, int]:
        return max(1, round(width)), max(1, round(height))

    # Async flow -----------------------------------------------------------
    async def edit(self, image_png: bytes, prompt: str, width: int, height: int) -> list[bytes]:
        self.require_key()
        image_url = await asyncio.to_thread(self.upload_binary, image_png)
        started = self.clock()
        request_id = await asyncio.to_thread(
            self.submit_edit, image_url, prompt, self.target_size(width, height)
        )
        output_url = await self.wait_for_result(request_id, started)
        return [await asyncio.to_thread(self.download, output_url)]

    async def generate(self, prompt: str) -> list[bytes]:
        self.require_key()
        started = self.clock()
        request_id = await asyncio.to_thread(self.submit_generate, prompt)
        output_url = await self.wait_for_result(request_id, started)
        return [await asyncio.to_thread(self.download, output_url)]

    async def wait_for_result(self, request_id: str, started: float | None = None) -> str:
        """Poll *request_id* until it completes and return its output URL.

        Each attempt waits one interval first. Transient failures are logged
        and retried; an explicit failure status ends the wait immediately.
        """

        if started is None:
            started = self.clock()
        while self.clock() - started < self.poll_timeout:
            await self.sleep(self.poll_interval)
            try:
                result = await asyncio.to_thread(self.poll_result, request_id)
            except TransientPollError as exc:
                logger.warning("Polling %s request %s failed, retrying: %s", self.name, request_id, exc)
                continue

            if result.status is PollStatus.COMPLETED:
                if not result.output_url:
                    raise ProviderError("Task completed but no output URL was found.")
                logger.info("%s request %s completed", self.name, request_id)
                return result.output_url
            if result.status is PollStatus.FAILED:
                raise ProviderError(f"{self.label or self.name} task failed: {result.error or 'Unknown error'}")

        minutes = self.poll_timeout / 60.0
        raise JobTimeoutError(f"{self.label or self.name} task timed out after {minutes:g} minutes.")

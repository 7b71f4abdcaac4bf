from __future__ import annotations

import logging
import math

import requests

from compositor.ai.providers import PollingProvider, PollResult, PollStatus
from compositor.core.errors import ProviderError, TransientPollError


logger = logging.getLogger(__name__)

API_BASE = "https://api.wavespeed.ai/api/v3"
UPLOAD_URL = f"{API_BASE}/media/upload/binary"
EDIT_URL = f"{API_BASE}/bytedance/seedream-v4/edit"
GENERATE_URL = f"{API_BASE}/bytedance/seedream-v4"
RESULT_URL = API_BASE + "/predictions/{request_id}/result"

MIN_PIXELS = 921600
TEXT_TO_IMAGE_SIZE = "1024*1024"
REQUEST_TIMEOUT = 60.0


def minimum_pixel_size(width: float, height: float, min_pixels: int = MIN_PIXELS) -> tuple[int, int]:
    """Scale ``width x height`` up to at least *min_pixels*, keeping the aspect ratio."""

    final_width = max(1, round(width))
    final_height = max(1, round(height))
    if final_width * final_height < min_pixels:
        aspect_ratio = final_width / final_height
        new_width = math.sqrt(min_pixels * aspect_ratio)
        new_height = new_width / aspect_ratio
        final_width = math.ceil(new_width)
        final_height = math.ceil(new_height)
    return final_width, final_height


class SeaDreamProvider(PollingProvider):
    """SeaDream v4 through the WaveSpeed prediction API."""

    name = "seadream"
    label = "SeaDream"

    def __init__(self, api_key: str = "", session: requests.Session | None = None):
        super().__init__(api_key, session=session or requests.Session())

    def _headers(self, json_body: bool = False) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def target_size(self, width: int, height: int) -> tuple[int, int]:
        return minimum_pixel_size(width, height)

    def upload_binary(self, data: bytes) -> str:
        try:
            response = self.session.post(
                UPLOAD_URL,
                headers=self._headers(),
                files={"file": ("snapshot.png", data, "image/png")},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Image upload failed: {exc}") from exc
        if not response.ok:
            raise ProviderError(
                f"Image upload failed: Upload failed with status {response.status_code}: {response.text}"
            )
        download_url = _json_path(response, "data", "download_url")
        if not download_url:
            raise ProviderError("Image upload failed: Upload succeeded but no download URL returned.")
        return download_url

    def _submit(self, url: str, payload: dict) -> str:
        try:
            response = self.session.post(
                url, headers=self._headers(json_body=True), json=payload, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as exc:
            raise ProviderError(f"SeaDream task submission failed: {exc}") from exc
        if not response.ok:
            raise ProviderError(
                f"SeaDream task submission failed with status {response.status_code}: {response.text}"
            )
        request_id = _json_path(response, "data", "id")
        if not request_id:
            raise ProviderError("Could not get a request ID from SeaDream API submission.")
        logger.info("Submitted SeaDream request %s", request_id)
        return str(request_id)

    def submit_edit(self, image_url: str, prompt: str, size: tuple[int, int]) -> str:
        payload = {
            "enable_sync_mode": False,
            "enable_base_64_output": False,
            "images": [image_url],
            "prompt": prompt,
            "size": f"{size[0]}*{size[1]}",
        }
        return self._submit(EDIT_URL, payload)

    def submit_generate(self, prompt: str) -> str:
        payload = {
            "enable_sync_mode": False,
            "enable_base_64_output": False,
            "prompt": prompt,
            "size": TEXT_TO_IMAGE_SIZE,
        }
        return self._submit(GENERATE_URL, payload)

    def poll_result(self, request_id: str) -> PollResult:
        try:
            response = self.session.get(
                RESULT_URL.format(request_id=request_id),
                headers=self._headers(),
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise TransientPollError(str(exc)) from exc
        if not response.ok:
            raise TransientPollError(f"status {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(f"Malformed poll response from SeaDream: {exc}") from exc
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ProviderError("Malformed poll response from SeaDream: missing task data.")

        status = data.get("status")
        if status == PollStatus.COMPLETED.value:
            outputs = data.get("outputs") or []
            return PollResult(PollStatus.COMPLETED, output_url=outputs[0] if outputs else None)
        if status == PollStatus.FAILED.value:
            return PollResult(PollStatus.FAILED, error=data.get("error"))
        return PollResult(PollStatus.PENDING)

    def download(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as exc:
            raise ProviderError(f"Failed to download the final image from {url}") from exc
        if not response.ok:
            raise ProviderError(f"Failed to download the final image from {url}")
        return response.content


def _json_path(response, *keys):
    try:
        value = response.json()
    except ValueError as exc:
        raise ProviderError(f"Malformed response from provider: {exc}") from exc
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value

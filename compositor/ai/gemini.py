from __future__ import annotations

import asyncio
import base64
import logging

import requests

from compositor.ai.providers import ImageProvider
from compositor.core.errors import ProviderError


logger = logging.getLogger(__name__)

MODEL_NAME = "gemini-2.5-flash-image-preview"
GENERATE_CONTENT_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
REQUEST_TIMEOUT = 120.0


class GeminiProvider(ImageProvider):
    """Gemini image model through the ``generateContent`` REST endpoint.

    The call is a single request; images come back inline as base64 parts.
    """

    name = "gemini"
    label = "Gemini"

    def __init__(self, api_key: str = "", session: requests.Session | None = None, model: str = MODEL_NAME):
        super().__init__(api_key, session=session or requests.Session())
        self.model = model

    async def edit(self, image_png: bytes, prompt: str, width: int, height: int) -> list[bytes]:
        self.require_key()
        parts = [
            {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(image_png).decode("ascii")}},
            {"text": prompt},
        ]
        return await asyncio.to_thread(self.generate_content, parts)

    async def generate(self, prompt: str) -> list[bytes]:
        self.require_key()
        return await asyncio.to_thread(self.generate_content, [{"text": prompt}])

    def generate_content(self, parts: list[dict]) -> list[bytes]:
        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }
        try:
            response = self.session.post(
                GENERATE_CONTENT_URL.format(model=self.model),
                headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
                json=body,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Failed to generate image with AI: {exc}") from exc

        if response.status_code == 404:
            raise ProviderError(
                "Failed to generate image with AI: A 404 Not Found error occurred. "
                "This is often due to an incorrect model name."
            )
        if not response.ok:
            raise ProviderError(
                f"Failed to generate image with AI: status {response.status_code}: {response.text}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"Failed to generate image with AI: {exc}") from exc
        return self.extract_images(payload)

    @staticmethod
    def extract_images(payload: dict) -> list[bytes]:
        images: list[bytes] = []
        texts: list[str] = []
        candidates = payload.get("candidates") or []
        if candidates:
            content = candidates[0].get("content") or {}
            for part in content.get("parts") or []:
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    images.append(base64.b64decode(inline["data"]))
                elif part.get("text"):
                    texts.append(part["text"])
        if not images:
            message = "".join(texts) or "API returned an empty response without an image."
            raise ProviderError(f"Failed to generate image with AI: {message}")
        logger.info("Gemini returned %d image(s)", len(images))
        return images

"""
Image Generation Client

Builds sticker prompts from a style's compiled template and calls the
OpenAI Images API to render them.
"""

import base64
import copy
import json
import logging
from typing import Any, Optional

import requests
from pydantic import BaseModel

from sticker_app.jobs.errors import RemoteGenerationError
from sticker_app.jobs.utils import truncate

logger = logging.getLogger(__name__)

ERROR_DETAIL_LIMIT = 800


class GenerationRequest(BaseModel):
    prompt: str
    model: str = "gpt-image-1"
    size: str = "1024x1024"


def build_prompt(template: Any, subject: str) -> str:
    """
    Serialize the style template with the subject filled in.

    The subject goes into `object_specification.subject`; an empty subject
    leaves the template as is.
    """
    subject = (subject or "").strip()
    if not subject:
        return json.dumps(template)

    prompt = copy.deepcopy(template) if isinstance(template, dict) else {}
    subject_block = prompt.get("object_specification")
    subject_block = dict(subject_block) if isinstance(subject_block, dict) else {}
    subject_block["subject"] = subject
    prompt["object_specification"] = subject_block
    return json.dumps(prompt)


class ImageGenerationClient:
    """Synchronous client for the image generation endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-image-1",
        size: str = "1024x1024",
        timeout: float = 120.0,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.size = size
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_request(self, template: Any, subject: str) -> GenerationRequest:
        return GenerationRequest(
            prompt=build_prompt(template, subject),
            model=self.model,
            size=self.size,
        )

    def generate(self, request: GenerationRequest) -> bytes:
        """Render one image and return its PNG bytes."""
        if not self.api_key:
            raise RemoteGenerationError(None, "OPENAI_API_KEY is not configured")

        try:
            response = self.session.post(
                f"{self.base_url}/images/generations",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json={"model": request.model, "prompt": request.prompt, "size": request.size},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteGenerationError(None, f"request failed: {e}") from e

        if not response.ok:
            try:
                detail = json.dumps(response.json())
            except ValueError:
                detail = response.text
            raise RemoteGenerationError(response.status_code, truncate(detail, ERROR_DETAIL_LIMIT))

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteGenerationError(response.status_code, "response was not JSON") from e

        entries = body.get("data") if isinstance(body, dict) else None
        first = entries[0] if isinstance(entries, list) and entries else {}

        b64 = first.get("b64_json")
        if b64:
            try:
                return base64.b64decode(b64)
            except ValueError as e:
                raise RemoteGenerationError(response.status_code, "invalid base64 image data") from e

        image_url = first.get("url")
        if image_url:
            return self._download(image_url)

        raise RemoteGenerationError(response.status_code, "No image returned")

    def _download(self, url: str) -> bytes:
        try:
            image = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteGenerationError(None, f"image download failed: {e}") from e
        if not image.ok:
            raise RemoteGenerationError(image.status_code, "Failed to fetch generated image URL")
        return image.content

    def close(self) -> None:
        self.session.close()

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from timeline_genai.models import GenerationSettings
from timeline_genai.storage import LocalBlobStorage

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """A generation provider rejected the request or returned nothing usable."""


@dataclass(frozen=True)
class GeneratedImage:
    # Exactly one of b64_data / url is set; urls are treated as stable.
    provider: str
    model: str
    b64_data: str | None = None
    url: str | None = None
    mime_type: str = "image/png"
    raw_metadata: dict[str, Any] = field(default_factory=dict)


class ImageProvider(Protocol):
    name: str

    async def generate(
        self,
        prompt: str,
        context_images: list[str],
        settings: GenerationSettings,
    ) -> list[GeneratedImage]: ...


class ContextImageLoader:
    """Turns context image locators (data URIs, local blobs, http urls) into bytes."""

    def __init__(
        self,
        storage: LocalBlobStorage | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.storage = storage
        self.timeout = timeout
        self._transport = transport

    async def load(self, locator: str) -> bytes:
        if locator.startswith("data:"):
            try:
                return base64.b64decode(locator.split("base64,", 1)[1])
            except (IndexError, binascii.Error) as exc:
                raise ProviderError("context image data URI is malformed") from exc

        if self.storage is not None and self.storage.owns(locator):
            name = self.storage.name_of(locator)
            path = self.storage.path_for(name or "")
            if not path.exists():
                raise ProviderError(f"context image {name} is missing from storage")
            return path.read_bytes()

        if locator.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, follow_redirects=True, transport=self._transport
                ) as client:
                    resp = await client.get(locator)
                    resp.raise_for_status()
            except httpx.HTTPError as exc:
                raise ProviderError(f"failed to fetch context image {locator}: {exc}") from exc
            return resp.content

        raise ProviderError(f"unsupported context image locator: {locator}")

    async def load_many(self, locators: list[str], limit: int = 8) -> list[bytes]:
        out: list[bytes] = []
        for locator in locators[:limit]:
            try:
                out.append(await self.load(locator))
            except ProviderError:
                logger.warning("Skipping context image %s", locator, exc_info=True)
        return out

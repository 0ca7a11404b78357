from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from timeline_genai.config import settings as app_settings
from timeline_genai.models import GenerationSettings
from timeline_genai.providers.base import ContextImageLoader, GeneratedImage, ProviderError

logger = logging.getLogger(__name__)

API_VERSION = "2025-04-01-preview"


class FluxImageProvider:
    """FLUX.1 Kontext Pro served from an Azure AI Foundry deployment."""

    name = "flux"

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        deployment: str | None = None,
        loader: ContextImageLoader | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.deployment = deployment or app_settings.flux_deployment
        self.loader = loader or ContextImageLoader()
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.endpoint}/openai/deployments/{self.deployment}/images/generations?api-version={API_VERSION}"

    async def build_payload(
        self, prompt: str, context_images: list[str], settings: GenerationSettings
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": prompt,
            "model": self.deployment.lower(),
            "n": max(1, int(settings.variations)),
            "size": settings.size or "1024x1024",
            "response_format": "b64_json",
        }
        # Only the first context image is used, as an img2img source.
        if context_images:
            try:
                data = await self.loader.load(context_images[0])
            except ProviderError:
                logger.warning("Context image unavailable, generating without it", exc_info=True)
            else:
                payload["image"] = "data:image/png;base64," + base64.b64encode(data).decode("ascii")
                payload["strength"] = 0.8
        return payload

    async def generate(
        self,
        prompt: str,
        context_images: list[str],
        settings: GenerationSettings,
    ) -> list[GeneratedImage]:
        payload = await self.build_payload(prompt, context_images, settings)
        fmt = (settings.format or "png").lower()
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.post(self.url, json=payload, headers=headers)
            except httpx.HTTPError as exc:
                raise ProviderError(f"FLUX request failed: {exc}") from exc

        if resp.status_code >= 400:
            try:
                err = resp.json()
            except ValueError:
                err = {}
            if not isinstance(err, dict):
                err = {}
            error = err.get("error")
            detail = error.get("message") if isinstance(error, dict) else err.get("message")
            raise ProviderError(f"FLUX request failed: {detail or f'HTTP {resp.status_code}'}")

        out: list[GeneratedImage] = []
        for item in resp.json().get("data") or []:
            b64 = item.get("b64_json")
            url = item.get("url")
            if not (b64 or url):
                continue
            out.append(
                GeneratedImage(
                    provider=self.name,
                    model=self.deployment,
                    b64_data=b64,
                    url=None if b64 else url,
                    mime_type=f"image/{'jpeg' if fmt == 'jpg' else fmt}",
                )
            )
        return out

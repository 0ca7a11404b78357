from __future__ import annotations

from typing import Any

from timeline_genai.config import settings as app_settings
from timeline_genai.models import GenerationSettings
from timeline_genai.providers.base import ContextImageLoader, GeneratedImage, ProviderError

_OUTPUT_FORMATS = {"png": "png", "jpg": "jpeg", "jpeg": "jpeg"}


def _lower(value: str | None, default: str) -> str:
    return (value or default).strip().lower() or default


class OpenAIImageProvider:
    name = "openai"

    def __init__(self, api_key: str, loader: ContextImageLoader | None = None, model: str | None = None) -> None:
        # Imported lazily so the app can start without the dependency installed.
        from openai import AsyncOpenAI  # type: ignore

        self.client = AsyncOpenAI(api_key=api_key)
        self.loader = loader or ContextImageLoader()
        self.model = model or app_settings.openai_image_model

    async def generate(
        self,
        prompt: str,
        context_images: list[str],
        settings: GenerationSettings,
    ) -> list[GeneratedImage]:
        """
        Text-to-image when there are no context images, otherwise an edit call
        that passes every readable context image as a reference.
        """
        output_format = _OUTPUT_FORMATS.get(_lower(settings.format, "png"), "png")
        params: dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "n": max(1, int(settings.variations)),
            "size": settings.size or "1024x1024",
            "quality": _lower(settings.quality, "medium"),
            "background": _lower(settings.background, "auto"),
            "output_format": output_format,
        }

        references = await self.loader.load_many(context_images)
        try:
            if references:
                files = [(f"context_{i}.png", data, "image/png") for i, data in enumerate(references)]
                resp = await self.client.images.edit(
                    image=files,
                    input_fidelity=_lower(settings.fidelity, "low"),
                    **params,
                )
            else:
                resp = await self.client.images.generate(**params)
        except Exception as exc:
            raise ProviderError(f"OpenAI image request failed: {exc}") from exc

        out: list[GeneratedImage] = []
        for item in getattr(resp, "data", None) or []:
            b64 = getattr(item, "b64_json", None)
            url = getattr(item, "url", None)
            if not (b64 or url):
                continue
            out.append(
                GeneratedImage(
                    provider=self.name,
                    model=self.model,
                    b64_data=b64,
                    url=None if b64 else url,
                    mime_type=f"image/{output_format}",
                    raw_metadata={"edit": bool(references)},
                )
            )
        return out

from __future__ import annotations

import base64
import logging
from io import BytesIO
from typing import Any

from PIL import Image

from timeline_genai.config import settings as app_settings
from timeline_genai.models import GenerationSettings
from timeline_genai.providers.base import ContextImageLoader, GeneratedImage, ProviderError

logger = logging.getLogger(__name__)


class GeminiImageProvider:
    name = "gemini"

    def __init__(self, api_key: str, loader: ContextImageLoader | None = None) -> None:
        # Imported lazily so the app can start without the dependency installed.
        from google import genai  # type: ignore

        self._genai = genai
        self.client = genai.Client(api_key=api_key)
        self.loader = loader or ContextImageLoader()

    def model_for(self, settings: GenerationSettings, has_context_images: bool) -> str:
        # Reference images always go through the multimodal image model.
        if has_context_images:
            return app_settings.gemini_edit_model
        engine = settings.engine or ""
        return app_settings.gemini_engines.get(engine, app_settings.gemini_engines["Imagen 3"])

    async def generate(
        self,
        prompt: str,
        context_images: list[str],
        settings: GenerationSettings,
    ) -> list[GeneratedImage]:
        """
        Two paths depending on model family:
        - Imagen models: `aio.models.generate_images(...)` (text-to-image)
        - Gemini image models: `aio.models.generate_content(...)` with image response modality
        """
        from google.genai import types  # type: ignore

        n = max(1, int(settings.variations))
        aspect_ratio = settings.size or "1:1"
        references = _decode_references(await self.loader.load_many(context_images))
        model = self.model_for(settings, bool(references))
        out: list[GeneratedImage] = []

        try:
            if model.startswith("imagen-"):
                resp = await self.client.aio.models.generate_images(
                    model=model,
                    prompt=prompt,
                    config=types.GenerateImagesConfig(
                        number_of_images=n,
                        aspect_ratio=aspect_ratio,
                    ),
                )
                for gi in getattr(resp, "generated_images", []) or []:
                    img_bytes = getattr(getattr(gi, "image", None), "image_bytes", None)
                    if not img_bytes:
                        continue
                    out.append(self._wrap(Image.open(BytesIO(img_bytes)), model, {}))
                return out

            # Image-preview models return one image per call, so loop until we hit n.
            for _ in range(n):
                contents: list[Any] = [f"{prompt}\nDesired aspect ratio: {aspect_ratio}."]
                contents.extend(references)
                resp = await self.client.aio.models.generate_content(
                    model=model,
                    contents=contents,
                    config=types.GenerateContentConfig(response_modalities=["image", "text"]),
                )
                extracted = _extract_images_from_generate_content(resp)
                for img, meta in extracted:
                    out.append(self._wrap(img, model, meta))
                    if len(out) >= n:
                        return out
                # Stop early if we didn't get anything back this attempt.
                if not extracted:
                    break
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"Gemini image request failed: {exc}") from exc
        return out

    def _wrap(self, image: Image.Image, model: str, meta: dict[str, Any]) -> GeneratedImage:
        buf = BytesIO()
        image.save(buf, format="PNG")
        return GeneratedImage(
            provider=self.name,
            model=model,
            b64_data=base64.b64encode(buf.getvalue()).decode("ascii"),
            mime_type="image/png",
            raw_metadata=meta,
        )


def _extract_images_from_generate_content(resp: Any) -> list[tuple[Image.Image, dict[str, Any]]]:
    out: list[tuple[Image.Image, dict[str, Any]]] = []
    for cand in getattr(resp, "candidates", []) or []:
        content = getattr(cand, "content", None)
        parts = getattr(content, "parts", None) or []
        for part in parts:
            inline = getattr(part, "inline_data", None)
            if not inline:
                continue
            mime = getattr(inline, "mime_type", None) or ""
            data = getattr(inline, "data", None)
            if not data:
                continue
            if mime and not mime.startswith("image/"):
                continue
            try:
                img = Image.open(BytesIO(data))
            except Exception:
                continue
            out.append((img, {"mime_type": mime}))
    return out


def _decode_references(blobs: list[bytes]) -> list[Image.Image]:
    references: list[Image.Image] = []
    for i, data in enumerate(blobs):
        try:
            image = Image.open(BytesIO(data))
            image.load()
        except (OSError, Image.DecompressionBombError):
            logger.warning("Skipping context image %d: not a readable image", i + 1, exc_info=True)
            continue
        references.append(image)
    return references

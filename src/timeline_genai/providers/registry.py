from __future__ import annotations

from timeline_genai.catalog import ModelKind
from timeline_genai.config import Settings, settings as default_config
from timeline_genai.providers.base import ContextImageLoader, ImageProvider, ProviderError
from timeline_genai.providers.flux_provider import FluxImageProvider
from timeline_genai.providers.gemini_provider import GeminiImageProvider
from timeline_genai.providers.openai_provider import OpenAIImageProvider


def build_provider(
    kind: ModelKind,
    config: Settings | None = None,
    loader: ContextImageLoader | None = None,
) -> ImageProvider:
    config = config or default_config
    if kind is ModelKind.gpt_image_1:
        if not config.openai_api_key:
            raise ProviderError("OPENAI_API_KEY is not set")
        return OpenAIImageProvider(api_key=config.openai_api_key, loader=loader, model=config.openai_image_model)
    if kind is ModelKind.gemini:
        if not config.gemini_api_key:
            raise ProviderError("GEMINI_API_KEY is not set")
        return GeminiImageProvider(api_key=config.gemini_api_key, loader=loader)
    if kind is ModelKind.flux_kontext_pro:
        if not (config.flux_api_key and config.flux_endpoint):
            raise ProviderError("FLUX_API_KEY and FLUX_ENDPOINT must be set")
        return FluxImageProvider(
            api_key=config.flux_api_key,
            endpoint=config.flux_endpoint,
            deployment=config.flux_deployment,
            loader=loader,
        )
    raise ProviderError(f"no provider for model '{kind}'")

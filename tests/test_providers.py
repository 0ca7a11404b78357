"""Tests for provider request shaping with stubbed transports and clients."""

import asyncio
import base64
import json
import time
from types import SimpleNamespace

import httpx
import pytest

from conftest import PNG_B64
from timeline_genai.catalog import ModelKind, default_settings
from timeline_genai.config import Settings
from timeline_genai.generation import GenerationError, ImageGenerationService
from timeline_genai.providers.base import ContextImageLoader, ProviderError
from timeline_genai.providers.flux_provider import FluxImageProvider
from timeline_genai.providers.gemini_provider import GeminiImageProvider
from timeline_genai.providers.openai_provider import OpenAIImageProvider
from timeline_genai.providers.registry import build_provider


def _flux(handler, storage=None):
    return FluxImageProvider(
        api_key="secret",
        endpoint="https://foundry.example/",
        deployment="FLUX.1-Kontext-Pro",
        loader=ContextImageLoader(storage=storage),
        transport=httpx.MockTransport(handler),
    )


def test_flux_generation_request(storage):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"b64_json": PNG_B64}]})

    context = storage.upload(PNG_B64, "png")
    settings = default_settings(ModelKind.flux_kontext_pro)
    images = asyncio.run(_flux(handler, storage).generate("a lamp", [context, "ignored"], settings))

    assert seen["url"].startswith("https://foundry.example/openai/deployments/FLUX.1-Kontext-Pro/images/generations")
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["model"] == "flux.1-kontext-pro"
    assert seen["body"]["size"] == "1024x1792"
    assert seen["body"]["strength"] == 0.8
    assert seen["body"]["image"] == "data:image/png;base64," + PNG_B64
    assert [i.b64_data for i in images] == [PNG_B64]


def test_flux_without_readable_context_image():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert "image" not in body
        return httpx.Response(200, json={"data": [{"url": "https://cdn.example/out.png"}]})

    settings = default_settings(ModelKind.flux_kontext_pro)
    images = asyncio.run(_flux(handler).generate("a lamp", ["ftp://nowhere/x.png"], settings))
    assert images[0].url == "https://cdn.example/out.png"
    assert images[0].b64_data is None


def test_flux_error_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "rate limited"}})

    with pytest.raises(ProviderError, match="rate limited"):
        asyncio.run(_flux(handler).generate("a lamp", [], default_settings(ModelKind.flux_kontext_pro)))


def test_loader_reads_data_uri_and_local_blob(storage):
    loader = ContextImageLoader(storage=storage)
    raw = base64.b64decode(PNG_B64)
    assert asyncio.run(loader.load(f"data:image/png;base64,{PNG_B64}")) == raw
    assert asyncio.run(loader.load(storage.upload(PNG_B64, "png"))) == raw
    assert asyncio.run(loader.load_many(["/blobs/missing.png", f"data:image/png;base64,{PNG_B64}"])) == [raw]


def test_loader_fetches_remote_images():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok.png":
            return httpx.Response(200, content=b"remote-bytes")
        return httpx.Response(404)

    loader = ContextImageLoader(transport=httpx.MockTransport(handler))
    assert asyncio.run(loader.load("https://cdn.example/ok.png")) == b"remote-bytes"
    with pytest.raises(ProviderError):
        asyncio.run(loader.load("https://cdn.example/gone.png"))


class _SlowImages:
    def __init__(self, delay):
        self.delay = delay

    async def generate(self, **params):
        await asyncio.sleep(self.delay)
        return SimpleNamespace(data=[SimpleNamespace(b64_json=PNG_B64, url=None)])


def test_openai_call_is_cut_off_by_timeout(store, storage, project):
    provider = OpenAIImageProvider(api_key="test")
    provider.client = SimpleNamespace(images=_SlowImages(delay=5.0))
    service = ImageGenerationService(store, storage, lambda kind: provider, timeout_s=0.2)
    timeline = project.timelines[0]
    card_id = timeline.cards[0].id

    started = time.monotonic()
    with pytest.raises(GenerationError, match="timed out"):
        asyncio.run(service.generate_for_card(project.id, timeline.id, card_id))

    assert time.monotonic() - started < 2.0
    assert store.get_card(project.id, timeline.id, card_id).output_images == []
    assert not service.is_generating(card_id)


class _FakeGeminiModels:
    def __init__(self):
        self.calls = []

    async def generate_images(self, model, prompt, config):
        self.calls.append(model)
        image = SimpleNamespace(image_bytes=base64.b64decode(PNG_B64))
        return SimpleNamespace(generated_images=[SimpleNamespace(image=image)])


def test_gemini_skips_unreadable_context_images():
    provider = GeminiImageProvider(api_key="test")
    models = _FakeGeminiModels()
    provider.client = SimpleNamespace(aio=SimpleNamespace(models=models))
    settings = default_settings(ModelKind.gemini)

    images = asyncio.run(provider.generate("a lamp", ["data:image/png;base64,aGVsbG8="], settings))

    # Nothing usable as a reference, so the Imagen engine is used.
    assert models.calls == ["imagen-3.0-generate-002"]
    assert len(images) == 1
    assert base64.b64decode(images[0].b64_data).startswith(b"\x89PNG")


def test_registry_requires_keys():
    config = Settings(openai_api_key=None, gemini_api_key=None, flux_api_key=None, flux_endpoint=None)
    for kind in ModelKind:
        with pytest.raises(ProviderError):
            build_provider(kind, config)


def test_registry_builds_flux():
    config = Settings(flux_api_key="k", flux_endpoint="https://foundry.example")
    provider = build_provider(ModelKind.flux_kontext_pro, config)
    assert isinstance(provider, FluxImageProvider)
    assert provider.deployment == config.flux_deployment

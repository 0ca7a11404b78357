from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from timeline_genai.catalog import ModelKind, model_display_name
from timeline_genai.config import settings as app_settings
from timeline_genai.models import GenerationSettings
from timeline_genai.providers.base import GeneratedImage, ImageProvider, ProviderError
from timeline_genai.storage import BlobStorage, BlobStorageError
from timeline_genai.store import TimelineStore

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ModelKind], ImageProvider]


class GenerationError(RuntimeError):
    """Generation failed as a whole; the card was not modified."""


@dataclass(frozen=True)
class GenerationOutcome:
    output_images: list[str]
    context_images: list[str]
    settings: GenerationSettings
    message: str


class ImageGenerationService:
    """
    Runs one prompt through a provider and records the result on a card.

    The card receives a single update with the complete output set, or none at
    all: a batch succeeds if at least one image survives upload.
    """

    def __init__(
        self,
        store: TimelineStore,
        storage: BlobStorage,
        provider_factory: ProviderFactory,
        timeout_s: float | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.provider_factory = provider_factory
        self.timeout_s = timeout_s if timeout_s is not None else app_settings.generation_timeout_s
        self._in_flight: set[str] = set()

    def is_generating(self, card_id: str) -> bool:
        return card_id in self._in_flight

    async def refresh_locators(self, locators: list[str]) -> list[str]:
        refreshed: list[str] = []
        for locator in locators:
            if not self.storage.owns(locator):
                refreshed.append(locator)
                continue
            try:
                refreshed.append(self.storage.refresh(locator))
            except BlobStorageError:
                logger.warning("Failed to refresh %s; using it as-is", locator, exc_info=True)
                refreshed.append(locator)
        return refreshed

    async def generate_for_card(
        self,
        project_id: str,
        timeline_id: str,
        card_id: str,
        clear_previous: bool = False,
    ) -> GenerationOutcome:
        card = self.store.get_card(project_id, timeline_id, card_id)
        if card is None:
            raise GenerationError("card not found")
        if card_id in self._in_flight:
            raise GenerationError("a generation is already running for this card")

        snapshot = self.store.get_settings().copy()
        kind = ModelKind.parse(snapshot.model)
        if kind is None:
            raise GenerationError(f"unknown model '{snapshot.model}'")

        self._in_flight.add(card_id)
        try:
            if clear_previous and card.output_images:
                # Mirrors the editor clearing old results before regenerating.
                self.store.update_card(project_id, timeline_id, card_id, {"output_images": []})

            context_images = await self.refresh_locators(card.context_images)
            try:
                provider = self.provider_factory(kind)
                images = await asyncio.wait_for(
                    provider.generate(card.context_prompt, context_images, snapshot),
                    timeout=self.timeout_s,
                )
            except asyncio.TimeoutError as exc:
                logger.error("Generation for card %s timed out after %.0fs", card_id, self.timeout_s)
                raise GenerationError("image generation timed out") from exc
            except ProviderError as exc:
                logger.exception("Generation for card %s failed", card_id)
                raise GenerationError(str(exc)) from exc

            stored = self._store_outputs(images, snapshot.format)
            if not stored:
                raise GenerationError("no images were successfully generated or uploaded")

            self.store.update_card(
                project_id,
                timeline_id,
                card_id,
                {
                    "output_context_image": stored[0],
                    "output_images": stored,
                    "context_images": context_images,
                    "context_settings": snapshot,
                },
            )
        finally:
            self._in_flight.discard(card_id)

        name = model_display_name(snapshot.model, snapshot.engine, bool(context_images))
        message = f"{len(stored)} image(s) generated with {name} model."
        logger.info("%s (card %s)", message, card_id)
        return GenerationOutcome(
            output_images=stored,
            context_images=context_images,
            settings=snapshot,
            message=message,
        )

    def _store_outputs(self, images: list[GeneratedImage], fmt: str) -> list[str]:
        stored: list[str] = []
        for i, image in enumerate(images):
            if image.url and not image.b64_data:
                stored.append(image.url)
                continue
            if not image.b64_data:
                logger.warning("Image %d from %s carried no data", i + 1, image.provider)
                continue
            try:
                stored.append(self.storage.upload(image.b64_data, fmt or "png"))
            except BlobStorageError:
                # Keep going; one bad upload does not sink the batch.
                logger.warning("Failed to store image %d from %s", i + 1, image.provider, exc_info=True)
        return stored

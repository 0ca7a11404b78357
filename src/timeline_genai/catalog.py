from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from timeline_genai.models import GenerationSettings


class ModelKind(str, Enum):
    gpt_image_1 = "GPT Image 1"
    gemini = "Gemini"
    flux_kontext_pro = "FLUX.1 Kontext Pro"

    @property
    def schema(self) -> ModelSchema:
        return MODEL_SCHEMAS[self]

    @classmethod
    def parse(cls, value: str | None) -> ModelKind | None:
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class ModelSchema:
    """Which settings a model exposes, their legal values, and its default tuple."""

    kind: ModelKind
    options: dict[str, tuple[str, ...]]
    defaults: dict[str, Any]

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(self.options)

    def default_settings(self) -> GenerationSettings:
        return GenerationSettings(model=self.kind.value, **self.defaults)

    def allows(self, key: str, value: Any) -> bool:
        if key not in self.options:
            return False
        return str(value) in self.options[key]


_VARIATIONS_1_TO_4 = ("1", "2", "3", "4")

MODEL_SCHEMAS: dict[ModelKind, ModelSchema] = {
    ModelKind.gpt_image_1: ModelSchema(
        kind=ModelKind.gpt_image_1,
        options={
            "format": ("png", "jpg"),
            "size": ("1024x1024", "1024x1536", "1536x1024"),
            "quality": ("Low", "Medium", "High"),
            "fidelity": ("Low", "High"),
            "background": ("Auto", "Transparent", "Opaque"),
            "variations": _VARIATIONS_1_TO_4,
        },
        defaults={
            "format": "png",
            "size": "1024x1536",
            "quality": "High",
            "fidelity": "Low",
            "background": "Auto",
            "variations": 1,
        },
    ),
    ModelKind.gemini: ModelSchema(
        kind=ModelKind.gemini,
        options={
            "engine": ("Imagen 3", "Imagen 4", "Imagen 4 Ultra", "Flash Image (Nano Banana)"),
            "format": ("png",),
            "size": ("1:1", "9:16", "16:9", "3:4", "4:3"),
            "quality": ("Best",),
            "variations": _VARIATIONS_1_TO_4,
        },
        defaults={
            "engine": "Imagen 3",
            "format": "png",
            "size": "9:16",
            "quality": "Best",
            "fidelity": "",
            "background": "",
            "variations": 1,
        },
    ),
    ModelKind.flux_kontext_pro: ModelSchema(
        kind=ModelKind.flux_kontext_pro,
        options={
            "format": ("png", "jpg"),
            "size": ("1024x1024", "1024x1792", "1792x1024"),
            "quality": ("Best",),
            "variations": ("1",),
        },
        defaults={
            "format": "png",
            "size": "1024x1792",
            "quality": "Best",
            "fidelity": "",
            "background": "",
            "variations": 1,
        },
    ),
}

DEFAULT_MODEL = ModelKind.gpt_image_1


def default_settings(model: ModelKind | str = DEFAULT_MODEL) -> GenerationSettings:
    kind = ModelKind(model)
    return kind.schema.default_settings()


def configurable_fields(model: str) -> tuple[str, ...]:
    kind = ModelKind.parse(model)
    if kind is None:
        return ()
    return ("model",) + kind.schema.fields


def apply_setting(current: GenerationSettings, key: str, value: Any) -> GenerationSettings:
    """
    Return a new settings value with one field changed.

    Switching `model` discards every other field in favour of the new model's
    defaults; other keys must be configurable for the active model.
    """
    if key == "model":
        kind = ModelKind.parse(value)
        if kind is None:
            raise ValueError(f"unknown model '{value}'")
        return kind.schema.default_settings()

    kind = ModelKind.parse(current.model)
    if kind is None:
        raise ValueError(f"unknown model '{current.model}'")
    schema = kind.schema
    if key not in schema.options:
        raise ValueError(f"'{key}' is not configurable for {kind.value}")
    if not schema.allows(key, value):
        raise ValueError(f"'{value}' is not a valid {key} for {kind.value}")
    if key == "variations":
        value = int(value)
    return replace(current, **{key: value})


def model_display_name(
    model_identifier: str | None,
    engine: str | None = None,
    has_context_images: bool = False,
) -> str:
    if not model_identifier:
        return "Unknown model"

    kind = ModelKind.parse(model_identifier)
    if kind is ModelKind.gpt_image_1:
        return "GPT-4 Vision (Edit)" if has_context_images else "GPT-4 Vision"
    if kind is ModelKind.flux_kontext_pro:
        return "FLUX.1 Kontext Pro"
    if kind is ModelKind.gemini:
        return "Gemini Flash Image (Nano Banana)" if has_context_images else f"Gemini ({engine or 'default'})"
    # Unmatched identifiers are shown as-is.
    return model_identifier


def timeline_display_name(name: str | None, position: int) -> str:
    return name or f"Variant {position + 1}"

"""Tests for the per-model settings catalog and display naming."""

import pytest

from timeline_genai.catalog import (
    MODEL_SCHEMAS,
    ModelKind,
    apply_setting,
    configurable_fields,
    default_settings,
    model_display_name,
    timeline_display_name,
)


class TestDefaults:
    def test_factory_default_is_gpt_image(self):
        s = default_settings()
        assert (s.model, s.format, s.size, s.quality, s.fidelity, s.background, s.variations) == (
            "GPT Image 1", "png", "1024x1536", "High", "Low", "Auto", 1,
        )
        assert s.engine is None

    def test_gemini_defaults(self):
        s = default_settings(ModelKind.gemini)
        assert s.engine == "Imagen 3"
        assert s.size == "9:16"
        assert s.quality == "Best"
        assert s.fidelity == "" and s.background == ""

    def test_flux_defaults(self):
        s = default_settings("FLUX.1 Kontext Pro")
        assert s.size == "1024x1792"
        assert s.variations == 1

    def test_defaults_are_legal(self):
        for kind, schema in MODEL_SCHEMAS.items():
            s = schema.default_settings()
            for key in schema.fields:
                assert schema.allows(key, getattr(s, key)), (kind, key)


class TestConfigurableFields:
    def test_per_model(self):
        assert configurable_fields("GPT Image 1") == (
            "model", "format", "size", "quality", "fidelity", "background", "variations",
        )
        assert configurable_fields("Gemini") == ("model", "engine", "format", "size", "quality", "variations")
        assert configurable_fields("FLUX.1 Kontext Pro") == ("model", "format", "size", "quality", "variations")

    def test_unknown_model(self):
        assert configurable_fields("DALL-E 2") == ()


class TestApplySetting:
    def test_switching_model_drops_previous_values(self):
        current = apply_setting(default_settings(), "quality", "Low")
        switched = apply_setting(current, "model", "Gemini")
        assert switched == default_settings("Gemini")

    def test_variations_coerced_to_int(self):
        s = apply_setting(default_settings(), "variations", "3")
        assert s.variations == 3

    def test_returns_new_value(self):
        original = default_settings()
        changed = apply_setting(original, "format", "jpg")
        assert original.format == "png"
        assert changed.format == "jpg"

    @pytest.mark.parametrize(
        "model,key,value",
        [
            ("GPT Image 1", "size", "9:16"),
            ("GPT Image 1", "engine", "Imagen 4"),
            ("Gemini", "fidelity", "High"),
            ("FLUX.1 Kontext Pro", "variations", "2"),
        ],
    )
    def test_rejects_illegal_values(self, model, key, value):
        with pytest.raises(ValueError):
            apply_setting(default_settings(model), key, value)

    def test_rejects_unknown_model(self):
        with pytest.raises(ValueError):
            apply_setting(default_settings(), "model", "Midjourney")


class TestDisplayName:
    def test_gpt(self):
        assert model_display_name("GPT Image 1") == "GPT-4 Vision"
        assert model_display_name("GPT Image 1", has_context_images=True) == "GPT-4 Vision (Edit)"

    def test_gemini(self):
        assert model_display_name("Gemini", "Imagen 4") == "Gemini (Imagen 4)"
        assert model_display_name("Gemini") == "Gemini (default)"
        assert model_display_name("Gemini", "Imagen 4", True) == "Gemini Flash Image (Nano Banana)"

    def test_flux(self):
        assert model_display_name("FLUX.1 Kontext Pro", has_context_images=True) == "FLUX.1 Kontext Pro"

    def test_unknown_and_missing(self):
        assert model_display_name(None) == "Unknown model"
        assert model_display_name("") == "Unknown model"
        assert model_display_name("Some Model") == "Some Model"


def test_timeline_display_name():
    assert timeline_display_name(None, 0) == "Variant 1"
    assert timeline_display_name("", 2) == "Variant 3"
    assert timeline_display_name("Hero", 2) == "Hero"

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Loads keys from process env, and also from a local .env file.
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_file=".env", env_file_encoding="utf-8")

    data_dir: str = "data"
    state_file: str = "ImageGenStore.json"

    # Blob storage
    blob_dir: str = "data/blobs"
    blob_base_url: str = "/blobs"
    blob_signing_key: str = "change-me"
    blob_url_ttl_minutes: int = 60
    cleanup_workers: int = 2

    # Keys
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    flux_api_key: str | None = None
    flux_endpoint: str | None = None
    flux_deployment: str = "flux.1-kontext-pro"

    # Models
    openai_image_model: str = "gpt-image-1"
    gemini_edit_model: str = "gemini-2.5-flash-image-preview"
    gemini_engines: dict[str, str] = {
        "Imagen 3": "imagen-3.0-generate-002",
        "Imagen 4": "imagen-4.0-generate-001",
        "Imagen 4 Ultra": "imagen-4.0-ultra-generate-001",
        "Flash Image (Nano Banana)": "gemini-2.5-flash-image-preview",
    }

    generation_timeout_s: float = 180.0
    log_level: str = "INFO"


settings = Settings()

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ProjectCreateRequest(BaseModel):
    name: str


class RenameRequest(BaseModel):
    name: str = Field(min_length=1)


class TimelineCreateRequest(BaseModel):
    from_timeline_id: str | None = None


class CardCreateRequest(BaseModel):
    # Defaults to max(existing index) + 1 when omitted.
    index: int | None = Field(default=None, ge=0)
    context_url: str | None = None
    context_image: str | None = None


class CardForkRequest(BaseModel):
    from_index: int = Field(ge=0)
    context_url: str | None = None
    context_image: str | None = None


class CardUpdateRequest(BaseModel):
    index: int | None = None
    context_url: str | None = None
    context_prompt: str | None = None
    context_images: list[str] | None = None
    context_settings: dict[str, Any] | None = None
    output_context_image: str | None = None
    output_images: list[str] | None = None


class GenerateRequest(BaseModel):
    clear_previous: bool = False


class CompareRequest(BaseModel):
    image_url: str


class SettingsPayload(BaseModel):
    model: str
    format: str
    size: str
    quality: str
    fidelity: str = ""
    background: str = ""
    variations: int = Field(default=1, ge=1, le=4)
    engine: str | None = None


class SettingChangeRequest(BaseModel):
    key: str
    value: Any


class AsideRequest(BaseModel):
    aside: bool


class ImageLibraryOpenRequest(BaseModel):
    selection_mode: bool = False


class ActionsViewRequest(BaseModel):
    project_id: str
    timeline_id: str


class ResetRequest(BaseModel):
    confirm: bool = False


class RefreshRequest(BaseModel):
    url: str


class MutationResponse(BaseModel):
    result: str


class LibraryUploadRequest(BaseModel):
    # Raw base64 or a data: URI.
    file: str = Field(min_length=1)
    name: str | None = None

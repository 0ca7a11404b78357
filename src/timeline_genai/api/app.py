from __future__ import annotations

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from io import BytesIO
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import FileResponse
from PIL import Image

from timeline_genai.api.schemas import (
    ActionsViewRequest,
    AsideRequest,
    CardCreateRequest,
    CardForkRequest,
    CardUpdateRequest,
    CompareRequest,
    GenerateRequest,
    ImageLibraryOpenRequest,
    LibraryUploadRequest,
    MutationResponse,
    ProjectCreateRequest,
    RefreshRequest,
    RenameRequest,
    ResetRequest,
    SettingChangeRequest,
    SettingsPayload,
    TimelineCreateRequest,
)
from timeline_genai.catalog import ModelKind, configurable_fields, model_display_name, timeline_display_name
from timeline_genai.cleanup import BlobCleanupQueue
from timeline_genai.config import settings
from timeline_genai.generation import GenerationError, ImageGenerationService
from timeline_genai.models import GenerationSettings, ImageLibraryOptions, MutationResult
from timeline_genai.persistence import JsonFilePersistence
from timeline_genai.providers.base import ContextImageLoader, ImageProvider
from timeline_genai.providers.registry import build_provider
from timeline_genai.storage import MIME_TYPES, BlobNotFoundError, BlobStorageError, LocalBlobStorage
from timeline_genai.store import TimelineStore

logger = logging.getLogger(__name__)

# Library images share blob storage, told apart by name prefix.
LIBRARY_PREFIX = "library-"
LIBRARY_FORMATS = {"png", "jpeg", "gif", "webp"}


def _ensure_found(result: MutationResult, what: str) -> MutationResponse:
    if result is MutationResult.not_found:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return MutationResponse(result=result.value)


def _state_payload(store: TimelineStore) -> dict[str, Any]:
    state = store.state
    options = state.image_library_options
    return {
        "aside": state.aside,
        "projects": [_project_payload(p) for p in state.projects],
        "settings": asdict(state.settings),
        "compare": list(state.compare),
        "is_image_library_dialog_open": state.is_image_library_dialog_open,
        "image_library_options": {"selection_mode": options.selection_mode} if options else None,
        "is_project_create_dialog_open": state.is_project_create_dialog_open,
        "is_actions_view_open": state.is_actions_view_open,
        "active_actions_timeline": asdict(state.active_actions_timeline) if state.active_actions_timeline else None,
    }


def _inspect_image(payload: str) -> tuple[str, int, int]:
    """Decode an uploaded image and return (format, width, height)."""
    data = payload.split("base64,", 1)[1] if "base64," in payload else payload
    try:
        raw = base64.b64decode(data, validate=True)
        with Image.open(BytesIO(raw)) as image:
            fmt = (image.format or "").lower()
            width, height = image.size
    except (binascii.Error, OSError) as exc:
        raise ValueError(str(exc)) from exc
    if fmt not in LIBRARY_FORMATS:
        raise ValueError(f"unsupported format '{fmt or 'unknown'}'")
    return fmt, width, height


def _project_payload(project: Any) -> dict[str, Any]:
    data = asdict(project)
    for position, timeline in enumerate(data["timelines"]):
        timeline["display_name"] = timeline_display_name(timeline["name"], position)
    return data


def create_app(
    store: TimelineStore | None = None,
    storage: LocalBlobStorage | None = None,
    generation: ImageGenerationService | None = None,
) -> FastAPI:
    storage = storage or LocalBlobStorage()
    cleanup: BlobCleanupQueue | None = None
    if store is None:
        cleanup = BlobCleanupQueue(storage)
        store = TimelineStore(persistence=JsonFilePersistence(), cleanup=cleanup)
    if generation is None:
        loader = ContextImageLoader(storage=storage)

        def provider_factory(kind: ModelKind) -> ImageProvider:
            return build_provider(kind, settings, loader)

        generation = ImageGenerationService(store, storage, provider_factory)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if cleanup is not None:
            cleanup.shutdown()

    app = FastAPI(title="timeline_genai", lifespan=lifespan)
    app.state.store = store
    app.state.storage = storage
    app.state.generation = generation

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/state")
    def get_state() -> dict[str, Any]:
        return _state_payload(store)

    # -- projects ---------------------------------------------------------

    @app.post("/projects")
    def create_project(request: ProjectCreateRequest) -> dict[str, Any]:
        project = store.add_project(request.name)
        return _project_payload(project)

    @app.get("/projects/{project_id}")
    def get_project(project_id: str) -> dict[str, Any]:
        project = store.get_project(project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="project not found")
        return _project_payload(project)

    @app.delete("/projects/{project_id}")
    def delete_project(project_id: str) -> MutationResponse:
        return _ensure_found(store.remove_project(project_id), "project")

    @app.put("/projects/{project_id}/name")
    def rename_project(project_id: str, request: RenameRequest) -> MutationResponse:
        return _ensure_found(store.update_project_name(project_id, request.name), "project")

    # -- timelines --------------------------------------------------------

    @app.post("/projects/{project_id}/timelines")
    def create_timeline(project_id: str, request: TimelineCreateRequest) -> dict[str, Any]:
        timeline = store.add_timeline(project_id, request.from_timeline_id)
        if timeline is None:
            raise HTTPException(status_code=404, detail="project not found")
        return asdict(timeline)

    @app.delete("/projects/{project_id}/timelines/{timeline_id}")
    def delete_timeline(project_id: str, timeline_id: str) -> MutationResponse:
        return _ensure_found(store.remove_timeline(project_id, timeline_id), "timeline")

    @app.put("/projects/{project_id}/timelines/{timeline_id}/name")
    def rename_timeline(project_id: str, timeline_id: str, request: RenameRequest) -> MutationResponse:
        return _ensure_found(store.update_timeline_name(project_id, timeline_id, request.name), "timeline")

    # -- cards ------------------------------------------------------------

    @app.post("/projects/{project_id}/timelines/{timeline_id}/cards")
    def create_card(project_id: str, timeline_id: str, request: CardCreateRequest) -> dict[str, Any]:
        index = request.index if request.index is not None else store.next_card_index(project_id, timeline_id)
        card = store.add_card(project_id, timeline_id, index, request.context_url, request.context_image)
        if card is None:
            raise HTTPException(status_code=404, detail="timeline not found")
        return asdict(card)

    @app.patch("/projects/{project_id}/timelines/{timeline_id}/cards/{card_id}")
    def update_card(project_id: str, timeline_id: str, card_id: str, request: CardUpdateRequest) -> MutationResponse:
        updates = request.model_dump(exclude_unset=True)
        try:
            result = store.update_card(project_id, timeline_id, card_id, updates)
        except (KeyError, TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _ensure_found(result, "card")

    @app.delete("/projects/{project_id}/timelines/{timeline_id}/cards/last")
    def delete_last_card(project_id: str, timeline_id: str) -> MutationResponse:
        return _ensure_found(store.remove_last_card(project_id, timeline_id), "card")

    @app.post("/projects/{project_id}/timelines/{timeline_id}/fork")
    def fork_card(project_id: str, timeline_id: str, request: CardForkRequest) -> dict[str, Any]:
        timeline = store.fork_card(
            project_id, timeline_id, request.from_index, request.context_url, request.context_image
        )
        if timeline is None:
            raise HTTPException(status_code=404, detail="project not found")
        return asdict(timeline)

    @app.post("/projects/{project_id}/timelines/{timeline_id}/cards/{card_id}/generate")
    async def generate(project_id: str, timeline_id: str, card_id: str, request: GenerateRequest) -> dict[str, Any]:
        if store.get_card(project_id, timeline_id, card_id) is None:
            raise HTTPException(status_code=404, detail="card not found")
        try:
            outcome = await generation.generate_for_card(
                project_id, timeline_id, card_id, clear_previous=request.clear_previous
            )
        except GenerationError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {
            "output_images": outcome.output_images,
            "context_images": outcome.context_images,
            "settings": asdict(outcome.settings),
            "message": outcome.message,
        }

    # -- compare ----------------------------------------------------------

    @app.post("/compare")
    def add_compare(request: CompareRequest) -> MutationResponse:
        return MutationResponse(result=store.add_compare(request.image_url).value)

    @app.post("/compare/remove")
    def remove_compare(request: CompareRequest) -> MutationResponse:
        return MutationResponse(result=store.remove_compare(request.image_url).value)

    @app.delete("/compare")
    def clear_compare() -> MutationResponse:
        return MutationResponse(result=store.clear_compare().value)

    @app.get("/compare/settings")
    def compare_settings() -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for image_url in store.compare:
            card = store.find_card_by_output(image_url)
            gen = card.context_settings if card is not None else None
            out.append(
                {
                    "image_url": image_url,
                    "settings": asdict(gen) if gen is not None else None,
                    "model_name": model_display_name(
                        gen.model if gen else None,
                        gen.engine if gen else None,
                        bool(card.context_images) if card is not None else False,
                    ),
                }
            )
        return out

    # -- settings ---------------------------------------------------------

    @app.get("/settings")
    def get_settings() -> dict[str, Any]:
        current = store.get_settings()
        return {"settings": asdict(current), "configurable": list(configurable_fields(current.model))}

    @app.put("/settings")
    def put_settings(request: SettingsPayload) -> MutationResponse:
        return MutationResponse(result=store.set_settings(GenerationSettings(**request.model_dump())).value)

    @app.patch("/settings")
    def patch_setting(request: SettingChangeRequest) -> MutationResponse:
        try:
            result = store.set_setting(request.key, request.value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return MutationResponse(result=result.value)

    # -- session flags ----------------------------------------------------

    @app.put("/ui/aside")
    def set_aside(request: AsideRequest) -> dict[str, bool]:
        store.set_aside(request.aside)
        return {"aside": store.state.aside}

    @app.post("/ui/image-library")
    def open_image_library(request: ImageLibraryOpenRequest) -> dict[str, bool]:
        store.open_image_library_dialog(ImageLibraryOptions(selection_mode=request.selection_mode))
        return {"open": True}

    @app.delete("/ui/image-library")
    def close_image_library() -> dict[str, bool]:
        store.close_image_library_dialog()
        return {"open": False}

    @app.post("/ui/project-create")
    def open_project_create() -> dict[str, bool]:
        store.open_project_create_dialog()
        return {"open": True}

    @app.delete("/ui/project-create")
    def close_project_create() -> dict[str, bool]:
        store.close_project_create_dialog()
        return {"open": False}

    @app.post("/ui/actions-view")
    def open_actions_view(request: ActionsViewRequest) -> dict[str, bool]:
        store.open_actions_view(request.project_id, request.timeline_id)
        return {"open": True}

    @app.delete("/ui/actions-view")
    def close_actions_view() -> dict[str, bool]:
        store.close_actions_view()
        return {"open": False}

    @app.post("/reset")
    def reset(request: ResetRequest) -> dict[str, Any]:
        if not request.confirm:
            raise HTTPException(status_code=400, detail="reset requires confirm=true")
        store.reset_store()
        return _state_payload(store)

    # -- blobs ------------------------------------------------------------

    @app.get("/blobs/{name}")
    def get_blob(name: str, se: str | None = None, sig: str | None = None) -> FileResponse:
        if not storage.verify(name, se, sig):
            raise HTTPException(status_code=403, detail="blob url is invalid or expired")
        path = storage.path_for(name)
        if not path.exists():
            raise HTTPException(status_code=404, detail="blob not found")
        return FileResponse(path, media_type=MIME_TYPES.get(Path(name).suffix.lstrip("."), "application/octet-stream"))

    @app.post("/blobs/refresh")
    def refresh_blob(request: RefreshRequest) -> dict[str, str]:
        try:
            return {"image_url": storage.refresh(request.url)}
        except BlobNotFoundError as exc:
            raise HTTPException(status_code=404, detail="blob not found") from exc

    # -- image library ----------------------------------------------------

    @app.get("/library")
    def list_library(limit: int | None = Query(default=None, ge=1)) -> dict[str, Any]:
        images = storage.list(prefix=LIBRARY_PREFIX, limit=limit)
        logger.info("Listed %d library images", len(images))
        return {"images": [asdict(image) for image in images]}

    @app.post("/library")
    def upload_library_image(request: LibraryUploadRequest) -> dict[str, Any]:
        try:
            fmt, width, height = _inspect_image(request.file)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail=f"Invalid image file - only JPG, PNG, GIF, and WebP are supported ({exc})"
            ) from exc
        try:
            image_url = storage.upload(request.file, fmt, prefix=LIBRARY_PREFIX)
        except BlobStorageError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        name = storage.name_of(image_url) or ""
        logger.info("Added %s to the image library (original name %s)", name, request.name or "-")
        return {
            "image_url": image_url,
            "file_name": name,
            "size": storage.path_for(name).stat().st_size,
            "content_type": MIME_TYPES[Path(name).suffix.lstrip(".")],
            "width": width,
            "height": height,
        }

    @app.delete("/library")
    def delete_library_image(url: str) -> dict[str, bool]:
        name = storage.name_of(url)
        if name is None or not name.startswith(LIBRARY_PREFIX):
            raise HTTPException(status_code=400, detail="not a library image")
        try:
            storage.delete(url)
        except BlobNotFoundError as exc:
            raise HTTPException(status_code=404, detail="blob not found") from exc
        return {"success": True}

    return app

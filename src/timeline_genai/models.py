from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable


def new_id() -> str:
    return str(uuid.uuid4())


class MutationResult(str, Enum):
    ok = "ok"
    not_found = "not_found"
    unchanged = "unchanged"


@dataclass
class GenerationSettings:
    model: str
    format: str
    size: str
    quality: str
    fidelity: str
    background: str
    variations: int
    engine: str | None = None

    def copy(self) -> GenerationSettings:
        return replace(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationSettings:
        return cls(
            model=data["model"],
            format=data.get("format", ""),
            size=data.get("size", ""),
            quality=data.get("quality", ""),
            fidelity=data.get("fidelity", ""),
            background=data.get("background", ""),
            variations=int(data.get("variations", 1)),
            engine=data.get("engine"),
        )


@dataclass
class Card:
    id: str
    index: int
    context_url: str
    context_prompt: str
    context_images: list[str]
    context_settings: GenerationSettings
    output_context_image: str | None
    output_images: list[str]

    @classmethod
    def seed(
        cls,
        index: int,
        settings: GenerationSettings,
        context_url: str | None = None,
        context_image: str | None = None,
    ) -> Card:
        return cls(
            id=new_id(),
            index=index,
            context_url=context_url or "",
            context_prompt="",
            context_images=[context_image] if context_image else [],
            context_settings=settings.copy(),
            output_context_image=None,
            output_images=[],
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Card:
        return cls(
            id=data["id"],
            index=int(data["index"]),
            context_url=data.get("context_url", ""),
            context_prompt=data.get("context_prompt", ""),
            context_images=list(data.get("context_images", [])),
            context_settings=GenerationSettings.from_dict(data["context_settings"]),
            output_context_image=data.get("output_context_image"),
            output_images=list(data.get("output_images", [])),
        )


CARD_FIELDS = frozenset(f.name for f in fields(Card))


@dataclass
class Timeline:
    id: str
    from_timeline_id: str | None
    cards: list[Card]
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Timeline:
        return cls(
            id=data["id"],
            from_timeline_id=data.get("from_timeline_id"),
            cards=[Card.from_dict(c) for c in data.get("cards", [])],
            name=data.get("name"),
        )


@dataclass
class Project:
    id: str
    name: str
    timelines: list[Timeline]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        return cls(
            id=data["id"],
            name=data["name"],
            timelines=[Timeline.from_dict(t) for t in data.get("timelines", [])],
        )


@dataclass
class ImageLibraryOptions:
    selection_mode: bool = False
    # Invoked with (image_url, product_url) when an image is picked in selection mode.
    on_select: Callable[[str, str | None], None] | None = None


@dataclass(frozen=True)
class ActiveTimeline:
    project_id: str
    timeline_id: str


@dataclass
class StoreState:
    settings: GenerationSettings
    aside: bool = True
    projects: list[Project] = field(default_factory=list)
    compare: list[str] = field(default_factory=list)
    is_image_library_dialog_open: bool = False
    image_library_options: ImageLibraryOptions | None = None
    is_project_create_dialog_open: bool = False
    is_actions_view_open: bool = False
    active_actions_timeline: ActiveTimeline | None = None

    def to_dict(self) -> dict[str, Any]:
        # Session-only fields are never written out.
        return {
            "aside": self.aside,
            "projects": [asdict(p) for p in self.projects],
            "settings": asdict(self.settings),
            "compare": list(self.compare),
            "is_image_library_dialog_open": self.is_image_library_dialog_open,
            "is_project_create_dialog_open": self.is_project_create_dialog_open,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreState:
        return cls(
            settings=GenerationSettings.from_dict(data["settings"]),
            aside=bool(data.get("aside", True)),
            projects=[Project.from_dict(p) for p in data.get("projects", [])],
            compare=list(data.get("compare", []))[:2],
            is_image_library_dialog_open=bool(data.get("is_image_library_dialog_open", False)),
            is_project_create_dialog_open=bool(data.get("is_project_create_dialog_open", False)),
        )

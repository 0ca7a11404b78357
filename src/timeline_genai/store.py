from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Mapping

from timeline_genai.catalog import apply_setting, default_settings
from timeline_genai.cleanup import BlobCleanupQueue
from timeline_genai.models import (
    CARD_FIELDS,
    ActiveTimeline,
    Card,
    GenerationSettings,
    ImageLibraryOptions,
    MutationResult,
    Project,
    StoreState,
    Timeline,
    new_id,
)
from timeline_genai.persistence import StatePersistence

logger = logging.getLogger(__name__)

Listener = Callable[["TimelineStore"], None]

COMPARE_CAPACITY = 2

NULLABLE_CARD_FIELDS = frozenset({"output_context_image"})


def factory_state() -> StoreState:
    return StoreState(settings=default_settings())


class TimelineStore:
    """
    Owns every project, timeline and card plus the global generation settings.

    Mutations run to completion synchronously. A mutation that finds nothing to
    act on returns `MutationResult.not_found` (or None for creating calls) and
    leaves the state untouched. Effective mutations notify subscribers and then
    write a snapshot through the injected persistence.
    """

    def __init__(
        self,
        persistence: StatePersistence | None = None,
        cleanup: BlobCleanupQueue | None = None,
    ) -> None:
        self.persistence = persistence
        self.cleanup = cleanup
        self._listeners: list[Listener] = []
        loaded = persistence.load() if persistence is not None else None
        self.state = loaded or factory_state()

    # -- subscription ---------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Store listener failed")
        if self.persistence is not None:
            self.persistence.save(self.state)

    # -- lookups ----------------------------------------------------------

    @property
    def projects(self) -> list[Project]:
        return self.state.projects

    @property
    def compare(self) -> list[str]:
        return self.state.compare

    def get_project(self, project_id: str) -> Project | None:
        return next((p for p in self.state.projects if p.id == project_id), None)

    def get_timeline(self, project_id: str, timeline_id: str) -> Timeline | None:
        project = self.get_project(project_id)
        if project is None:
            return None
        return next((t for t in project.timelines if t.id == timeline_id), None)

    def get_card(self, project_id: str, timeline_id: str, card_id: str) -> Card | None:
        timeline = self.get_timeline(project_id, timeline_id)
        if timeline is None:
            return None
        return next((c for c in timeline.cards if c.id == card_id), None)

    def last_card(self, project_id: str, timeline_id: str) -> Card | None:
        timeline = self.get_timeline(project_id, timeline_id)
        if timeline is None or not timeline.cards:
            return None
        return timeline.cards[-1]

    def next_card_index(self, project_id: str, timeline_id: str) -> int:
        timeline = self.get_timeline(project_id, timeline_id)
        if timeline is None or not timeline.cards:
            return 0
        return max(c.index for c in timeline.cards) + 1

    def find_card_by_output(self, output_context_image: str) -> Card | None:
        if not output_context_image:
            return None
        for project in self.state.projects:
            for timeline in project.timelines:
                for card in timeline.cards:
                    if card.output_context_image == output_context_image:
                        return card
        return None

    def gen_settings(self, output_context_image: str) -> GenerationSettings | None:
        # Linear scan; a single user's projects stay small.
        card = self.find_card_by_output(output_context_image)
        return card.context_settings.copy() if card is not None else None

    # -- settings ---------------------------------------------------------

    @property
    def settings(self) -> GenerationSettings:
        return self.state.settings

    def get_settings(self) -> GenerationSettings:
        return self.state.settings

    def set_settings(self, settings: GenerationSettings) -> MutationResult:
        self.state.settings = settings.copy()
        self._commit()
        return MutationResult.ok

    def set_setting(self, key: str, value: Any) -> MutationResult:
        self.state.settings = apply_setting(self.state.settings, key, value)
        self._commit()
        return MutationResult.ok

    def _snapshot_settings(self) -> GenerationSettings:
        return self.state.settings.copy()

    # -- projects ---------------------------------------------------------

    def add_project(self, name: str) -> Project:
        project = Project(
            id=new_id(),
            name=name,
            timelines=[Timeline(id=new_id(), from_timeline_id=None, cards=[Card.seed(0, self._snapshot_settings())])],
        )
        self.state.projects.append(project)
        logger.info("Created project %s (%s)", project.id, name)
        self._commit()
        return project

    def remove_project(self, project_id: str) -> MutationResult:
        # Blobs referenced by the project's cards stay in storage.
        remaining = [p for p in self.state.projects if p.id != project_id]
        if len(remaining) == len(self.state.projects):
            return MutationResult.not_found
        self.state.projects = remaining
        self._commit()
        return MutationResult.ok

    def update_project_name(self, project_id: str, name: str) -> MutationResult:
        project = self.get_project(project_id)
        if project is None:
            return MutationResult.not_found
        project.name = name
        self._commit()
        return MutationResult.ok

    # -- timelines --------------------------------------------------------

    def add_timeline(self, project_id: str, from_timeline_id: str | None) -> Timeline | None:
        project = self.get_project(project_id)
        if project is None:
            return None
        timeline = Timeline(
            id=new_id(),
            from_timeline_id=from_timeline_id,
            cards=[Card.seed(0, self._snapshot_settings())],
        )
        project.timelines.append(timeline)
        self._commit()
        return timeline

    def remove_timeline(self, project_id: str, timeline_id: str) -> MutationResult:
        project = self.get_project(project_id)
        if project is None:
            return MutationResult.not_found
        remaining = [t for t in project.timelines if t.id != timeline_id]
        if len(remaining) == len(project.timelines):
            return MutationResult.not_found
        project.timelines = remaining
        self._commit()
        return MutationResult.ok

    def update_timeline_name(self, project_id: str, timeline_id: str, name: str) -> MutationResult:
        timeline = self.get_timeline(project_id, timeline_id)
        if timeline is None:
            return MutationResult.not_found
        timeline.name = name
        self._commit()
        return MutationResult.ok

    # -- cards ------------------------------------------------------------

    def add_card(
        self,
        project_id: str,
        timeline_id: str,
        index: int,
        context_url: str | None = None,
        context_image: str | None = None,
    ) -> Card | None:
        # The caller picks the index, usually next_card_index().
        timeline = self.get_timeline(project_id, timeline_id)
        if timeline is None:
            return None
        card = Card.seed(index, self._snapshot_settings(), context_url, context_image)
        timeline.cards.append(card)
        self._commit()
        return card

    def update_card(
        self,
        project_id: str,
        timeline_id: str,
        card_id: str,
        updates: Mapping[str, Any],
    ) -> MutationResult:
        unknown = set(updates) - (CARD_FIELDS - {"id"})
        if unknown:
            raise ValueError(f"cannot update card fields: {', '.join(sorted(unknown))}")
        nulls = sorted(k for k, v in updates.items() if v is None and k not in NULLABLE_CARD_FIELDS)
        if nulls:
            raise ValueError(f"card fields cannot be null: {', '.join(nulls)}")

        timeline = self.get_timeline(project_id, timeline_id)
        card = next((c for c in timeline.cards if c.id == card_id), None) if timeline is not None else None
        if timeline is None or card is None:
            return MutationResult.not_found

        changes = dict(updates)
        for key in ("context_images", "output_images"):
            if key in changes:
                changes[key] = list(changes[key])
        if "context_settings" in changes:
            value = changes["context_settings"]
            if isinstance(value, Mapping):
                value = GenerationSettings.from_dict(dict(value))
            changes["context_settings"] = value.copy()

        updated = replace(card, **changes)
        timeline.cards = [updated if c.id == card_id else c for c in timeline.cards]
        self._commit()
        return MutationResult.ok

    def fork_card(
        self,
        project_id: str,
        from_timeline_id: str,
        from_index: int,
        context_url: str | None = None,
        context_image: str | None = None,
    ) -> Timeline | None:
        project = self.get_project(project_id)
        if project is None:
            return None
        timeline = Timeline(
            id=new_id(),
            from_timeline_id=from_timeline_id,
            cards=[Card.seed(from_index, self._snapshot_settings(), context_url, context_image)],
        )
        project.timelines.append(timeline)
        logger.debug("Forked timeline %s from %s at index %d", timeline.id, from_timeline_id, from_index)
        self._commit()
        return timeline

    def remove_last_card(self, project_id: str, timeline_id: str) -> MutationResult:
        timeline = self.get_timeline(project_id, timeline_id)
        if timeline is None or not timeline.cards:
            return MutationResult.not_found

        last = timeline.cards[-1]
        if self.cleanup is not None:
            for locator in last.output_images:
                if locator:
                    self.cleanup.schedule(locator)
        timeline.cards = timeline.cards[:-1]
        self._commit()
        return MutationResult.ok

    # -- compare ----------------------------------------------------------

    def add_compare(self, image_url: str) -> MutationResult:
        if image_url in self.state.compare or len(self.state.compare) >= COMPARE_CAPACITY:
            return MutationResult.unchanged
        self.state.compare = [*self.state.compare, image_url]
        self._commit()
        return MutationResult.ok

    def remove_compare(self, image_url: str) -> MutationResult:
        if image_url not in self.state.compare:
            return MutationResult.not_found
        self.state.compare = [u for u in self.state.compare if u != image_url]
        self._commit()
        return MutationResult.ok

    def clear_compare(self) -> MutationResult:
        self.state.compare = []
        self._commit()
        return MutationResult.ok

    # -- session flags ----------------------------------------------------

    def set_aside(self, aside: bool) -> None:
        self.state.aside = aside
        self._commit()

    def open_image_library_dialog(self, options: ImageLibraryOptions | None = None) -> None:
        self.state.is_image_library_dialog_open = True
        self.state.image_library_options = options
        self._commit()

    def close_image_library_dialog(self) -> None:
        self.state.is_image_library_dialog_open = False
        self.state.image_library_options = None
        self._commit()

    def open_project_create_dialog(self) -> None:
        self.state.is_project_create_dialog_open = True
        self._commit()

    def close_project_create_dialog(self) -> None:
        self.state.is_project_create_dialog_open = False
        self._commit()

    def open_actions_view(self, project_id: str, timeline_id: str) -> None:
        self.state.is_actions_view_open = True
        self.state.active_actions_timeline = ActiveTimeline(project_id=project_id, timeline_id=timeline_id)
        self._commit()

    def close_actions_view(self) -> None:
        self.state.is_actions_view_open = False
        self.state.active_actions_timeline = None
        self._commit()

    # -- lifecycle --------------------------------------------------------

    def reset_store(self) -> None:
        self.state = factory_state()
        logger.warning("Store reset to factory defaults")
        self._commit()

"""Tests for snapshot persistence."""

import json

from timeline_genai.models import ImageLibraryOptions
from timeline_genai.persistence import JsonFilePersistence, MemoryPersistence
from timeline_genai.store import TimelineStore


def test_round_trip_through_file(tmp_path):
    path = tmp_path / "state" / "ImageGenStore.json"
    store = TimelineStore(persistence=JsonFilePersistence(path))
    project = store.add_project("Persisted")
    timeline_id = project.timelines[0].id
    store.add_card(project.id, timeline_id, 1, "https://shop.example", "blob://a")
    store.update_timeline_name(project.id, timeline_id, "Main")
    store.set_setting("model", "Gemini")
    store.add_compare("blob://a")

    reloaded = TimelineStore(persistence=JsonFilePersistence(path))
    assert reloaded.projects == store.projects
    assert reloaded.get_settings() == store.get_settings()
    assert reloaded.compare == ["blob://a"]


def test_session_fields_are_not_persisted(tmp_path):
    path = tmp_path / "ImageGenStore.json"
    store = TimelineStore(persistence=JsonFilePersistence(path))
    store.open_image_library_dialog(ImageLibraryOptions(selection_mode=True, on_select=lambda u, p: None))
    store.open_actions_view("p", "t")
    store.open_project_create_dialog()

    document = json.loads(path.read_text("utf-8"))
    assert document["version"] == 0
    state = document["state"]
    assert "image_library_options" not in state
    assert "is_actions_view_open" not in state
    assert "active_actions_timeline" not in state

    reloaded = TimelineStore(persistence=JsonFilePersistence(path))
    assert reloaded.state.is_image_library_dialog_open is True
    assert reloaded.state.is_project_create_dialog_open is True
    assert reloaded.state.image_library_options is None
    assert reloaded.state.is_actions_view_open is False
    assert reloaded.state.active_actions_timeline is None


def test_corrupted_snapshot_starts_clean(tmp_path):
    path = tmp_path / "ImageGenStore.json"
    path.write_text("{not json", encoding="utf-8")
    store = TimelineStore(persistence=JsonFilePersistence(path))
    assert store.projects == []
    # The bad file is only replaced by the next mutation.
    assert path.read_text("utf-8") == "{not json"
    store.add_project("Fresh")
    assert json.loads(path.read_text("utf-8"))["state"]["projects"][0]["name"] == "Fresh"


def test_missing_file_loads_nothing(tmp_path):
    assert JsonFilePersistence(tmp_path / "nope.json").load() is None


def test_every_mutation_is_written():
    persistence = MemoryPersistence()
    store = TimelineStore(persistence=persistence)
    project = store.add_project("Counted")
    store.add_card(project.id, project.timelines[0].id, 1)
    store.add_compare("x")
    assert persistence.saves == 3
    assert len(persistence.load().projects[0].timelines[0].cards) == 2


def test_independent_stores_do_not_share_state():
    a = TimelineStore(persistence=MemoryPersistence())
    b = TimelineStore(persistence=MemoryPersistence())
    a.add_project("Only in a")
    assert b.projects == []

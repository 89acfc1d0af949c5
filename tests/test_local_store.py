import json

import pytest

from gallery_store import (
    DEMO_PROJECTS,
    MAX_COMMENT_LENGTH,
    InvalidProjectError,
    LocalJsonStore,
    ProjectNotFoundError,
    ReadOnlyProjectError,
    StoreError,
)


def _create(store, title="Studie", category="design", **extra):
    data = {"title": title, "category": category, "cover_image_url": "https://cdn.example.com/1-a.png"}
    data.update(extra)
    return store.create_project(data)


def test_empty_store_lists_demo_projects(store):
    projects = store.list_projects()
    assert [p["id"] for p in projects] == [p["id"] for p in DEMO_PROJECTS]
    assert [p["id"] for p in store.list_projects("fotografie")] == ["demo-2", "demo-4"]


def test_demo_projects_can_be_hidden(tmp_path):
    assert LocalJsonStore(tmp_path, show_demo=False).list_projects() == []


def test_unknown_category_rejected(store):
    with pytest.raises(InvalidProjectError):
        store.list_projects("sculpture")


def test_create_then_get(store):
    created = _create(store, description="  Öl auf Leinwand ")
    assert created["id"].startswith("project-")
    assert created["likes"] == 0 and created["views"] == 0
    assert created["description"] == "Öl auf Leinwand"
    assert created["created_at"].endswith("Z")
    assert store.get_project(created["id"]) == created
    assert json.loads(store.path_for("projects").read_text(encoding="utf-8"))[0]["id"] == created["id"]


def test_stored_projects_replace_demo_list(store):
    created = _create(store)
    assert [p["id"] for p in store.list_projects()] == [created["id"]]


def test_create_requires_title_and_category(store):
    with pytest.raises(InvalidProjectError, match="Titel ist erforderlich"):
        _create(store, title="  ")
    with pytest.raises(InvalidProjectError):
        _create(store, category="unbekannt")


def test_created_ids_are_unique(store):
    ids = {_create(store, title=f"P{i}")["id"] for i in range(5)}
    assert len(ids) == 5


def test_list_is_newest_first(store):
    store.path_for("projects").write_text(
        json.dumps(
            [
                {"id": "old", "title": "Alt", "category": "design", "created_at": "2024-01-01T00:00:00.000Z"},
                {"id": "new", "title": "Neu", "category": "video", "created_at": "2025-06-01T00:00:00.000Z"},
            ]
        ),
        encoding="utf-8",
    )
    assert [p["id"] for p in store.list_projects()] == ["new", "old"]
    assert [p["id"] for p in store.list_projects("video")] == ["new"]


def test_update_only_editable_fields(store):
    created = _create(store)
    updated = store.update_project(created["id"], {"title": " Neuer Titel ", "category": "ai_ki"})
    assert updated["title"] == "Neuer Titel"
    assert updated["category"] == "ai_ki"
    assert updated["updated_at"] >= created["updated_at"]
    with pytest.raises(InvalidProjectError, match="Not editable"):
        store.update_project(created["id"], {"likes": 1000})


def test_delete_cascades_to_comments_and_likes(store):
    keep = _create(store, title="Bleibt")
    gone = _create(store, title="Weg")
    store.add_comment(gone["id"], "v1", "Ana", "Schön")
    store.add_comment(keep["id"], "v1", "Ana", "Auch schön")
    store.toggle_like(gone["id"], "v1")

    removed = store.delete_project(gone["id"])

    assert removed["id"] == gone["id"]
    assert store.get_project(gone["id"]) is None
    assert [c["project_id"] for c in store.list_comments(keep["id"])] == [keep["id"]]
    assert store.list_comments(gone["id"]) == []
    assert not store.has_liked(gone["id"], "v1")


def test_delete_missing_project(store):
    with pytest.raises(ProjectNotFoundError):
        store.delete_project("project-404")


def test_demo_projects_are_read_only(store):
    assert store.get_project("demo-3")["title"] == "Surreale Kunst"
    with pytest.raises(ReadOnlyProjectError):
        store.toggle_like("demo-3", "visitor")
    with pytest.raises(ReadOnlyProjectError):
        store.add_comment("demo-3", "visitor", "Gast", "Hallo")
    with pytest.raises(ReadOnlyProjectError):
        store.delete_project("demo-3")


def test_increment_views(store):
    created = _create(store)
    assert store.increment_views(created["id"]) == 1
    assert store.increment_views(created["id"]) == 2
    assert store.get_project(created["id"])["views"] == 2


def test_toggle_like_twice_restores_count(store):
    created = _create(store)
    assert store.toggle_like(created["id"], "v1") == (True, 1)
    assert store.has_liked(created["id"], "v1")
    assert store.toggle_like(created["id"], "v2") == (True, 2)
    assert store.toggle_like(created["id"], "v1") == (False, 1)
    assert not store.has_liked(created["id"], "v1")


def test_comments_oldest_first_with_defaults(store):
    created = _create(store)
    first = store.add_comment(created["id"], "v1", "", "Erster")
    store.add_comment(created["id"], "v2", "Bea", "Zweiter")
    comments = store.list_comments(created["id"])
    assert [c["text"] for c in comments] == ["Erster", "Zweiter"]
    assert first["display_name"] == "Gast"
    assert first["avatar_url"].startswith("https://api.dicebear.com/")


def test_empty_comment_rejected(store):
    created = _create(store)
    with pytest.raises(InvalidProjectError, match="Kommentar darf nicht leer sein"):
        store.add_comment(created["id"], "v1", "Ana", "   ")


def test_delete_comment(store):
    created = _create(store)
    comment = store.add_comment(created["id"], "v1", "Ana", "Weg damit")
    assert store.delete_comment(comment["id"]) is True
    assert store.delete_comment(comment["id"]) is False


def test_stats(store):
    a = _create(store, title="A")
    _create(store, title="B")
    store.toggle_like(a["id"], "v1")
    store.increment_views(a["id"])
    assert store.stats() == {"total_projects": 2, "total_likes": 1, "total_views": 1}


def test_corrupt_document_raises_store_error(store):
    store.path_for("projects").write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreError):
        store.list_projects()
    store.path_for("projects").write_text('{"id": "x"}', encoding="utf-8")
    with pytest.raises(StoreError, match="JSON array"):
        store.list_projects()


def test_comment_length_limit(store):
    created = _create(store)
    accepted = store.add_comment(created["id"], "v1", "Ana", "x" * MAX_COMMENT_LENGTH)
    assert len(accepted["text"]) == MAX_COMMENT_LENGTH
    with pytest.raises(InvalidProjectError, match="zu lang"):
        store.add_comment(created["id"], "v1", "Ana", "x" * (MAX_COMMENT_LENGTH + 1))
    assert len(store.list_comments(created["id"])) == 1

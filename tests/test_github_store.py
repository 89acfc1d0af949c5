import httpx

from gallery_store import GitHubJsonStore
from github_contents import GitHubContentsClient


def make_store(repo, show_demo=True):
    client = GitHubContentsClient("owner", "repo", "token", transport=httpx.MockTransport(repo))
    return GitHubJsonStore(client, data_path="src/data/", show_demo=show_demo)


def test_paths_live_under_data_path(fake_repo):
    store = make_store(fake_repo)
    assert store.path_for("likes") == "src/data/likes.json"


def test_create_commits_projects_document(fake_repo):
    store = make_store(fake_repo)
    created = store.create_project({"title": "Brücke", "category": "architektur"})
    assert fake_repo.document("src/data/projects.json") == [created]
    assert store.get_project(created["id"])["title"] == "Brücke"


def test_like_and_comment_round_through_repository(fake_repo):
    fake_repo.seed(
        "src/data/projects.json",
        [{"id": "p1", "title": "Eins", "category": "design", "likes": 0, "views": 0, "created_at": "2025-01-01"}],
    )
    store = make_store(fake_repo)
    assert store.toggle_like("p1", "visitor") == (True, 1)
    store.add_comment("p1", "visitor", "Ana", "Toll")
    assert fake_repo.document("src/data/likes.json")[0]["user_id"] == "visitor"
    assert fake_repo.document("src/data/comments.json")[0]["text"] == "Toll"
    assert fake_repo.document("src/data/projects.json")[0]["likes"] == 1


def test_delete_removes_children(fake_repo):
    store = make_store(fake_repo)
    created = store.create_project({"title": "Weg", "category": "video"})
    store.add_comment(created["id"], "v", "Ana", "Hallo")
    store.delete_project(created["id"])
    assert fake_repo.document("src/data/projects.json") == []
    assert fake_repo.document("src/data/comments.json") == []

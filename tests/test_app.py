import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

import app as app_module
from app import DeploymentManager, app
import config
from conftest import FakeIdentity, FakeStore, make_zip
from errors import AuthenticationError, GameStoreError
from models import AuthenticatedUser, UploadedAsset
from github_manager import GitHubManager

AUTH = {"Authorization": "Bearer good-token"}


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def scratch(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def client(fake_github, store, scratch):
    publisher = GitHubManager("test-token", "octo", transport=httpx.MockTransport(fake_github),
                              poll_attempts=3, poll_interval=0)
    manager = DeploymentManager(publisher, store, temp_dir=str(scratch), max_upload_size=1024)
    app.dependency_overrides[app_module.get_identity_provider] = lambda: FakeIdentity()
    app.dependency_overrides[app_module.get_game_store] = lambda: store
    app.dependency_overrides[app_module.get_deployment_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()


def upload(client, files, game_name=None, headers=AUTH):
    data = {"gameName": game_name} if game_name is not None else {}
    return client.post("/api/upload", files=[("files", f) for f in files], data=data, headers=headers)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_reports_provider(client):
    body = client.get("/").json()
    assert body["service"] == "Game Site Publisher"
    assert "hosting_provider" in body


class TestAuthentication:
    def test_missing_header(self, client):
        response = client.get("/api/games")
        assert response.status_code == 401
        assert response.json() == {"error": "No authorization header"}

    def test_missing_token(self, client):
        response = client.get("/api/games", headers={"Authorization": "Bearer"})
        assert response.status_code == 401
        assert response.json() == {"error": "No token provided"}

    def test_rejected_token(self, client):
        response = client.get("/api/games", headers={"Authorization": "Bearer stale"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid or expired token"}

    def test_upload_requires_auth(self, client, fake_github):
        response = upload(client, [("index.html", b"<html></html>", "text/html")], headers={})
        assert response.status_code == 401
        assert fake_github.requests == []


    def test_failure_details_are_returned(self, client):
        class UnreachableIdentity:
            async def get_user(self, token):
                raise AuthenticationError("Authentication failed", details="auth service unreachable")

        app.dependency_overrides[app_module.get_identity_provider] = lambda: UnreachableIdentity()
        response = client.get("/api/games", headers=AUTH)
        assert response.status_code == 401
        assert response.json() == {"error": "Authentication failed", "details": "auth service unreachable"}


class TestUploadValidation:
    def test_no_files(self, client):
        response = client.post("/api/upload", data={"gameName": "Empty"}, headers=AUTH)
        assert response.status_code == 400
        assert response.json()["error"] == "No files uploaded"

    def test_no_index_html(self, client, fake_github):
        response = upload(client, [("app.js", b"1", "text/javascript")])
        assert response.status_code == 400
        assert "index.html" in response.json()["error"]
        assert fake_github.requests == []

    def test_zip_without_index(self, client):
        response = upload(client, [("game.zip", make_zip({"app.js": b"1"}), "application/zip")])
        assert response.status_code == 400
        assert response.json() == {"error": "ZIP archive must contain an index.html file"}

    def test_corrupt_zip(self, client):
        response = upload(client, [("game.zip", b"garbage", "application/zip")])
        assert response.status_code == 400
        assert response.json()["error"] == "Failed to process ZIP file"
        assert "game.zip" in response.json()["details"]

    def test_file_too_large(self, client):
        response = upload(client, [("index.html", b"x" * 2048, "text/html")])
        assert response.status_code == 413
        assert "index.html" in response.json()["details"]


class TestUploadDeployment:
    def test_loose_files(self, client, fake_github, store, scratch):
        response = upload(client, [
            ("index.html", b"<html></html>", "text/html"),
            ("style.css", b"body{}", "text/css"),
        ], game_name="My Game")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Game deployed successfully"
        assert body["name"] == "My Game"
        assert body["url"] == "https://octo.github.io/my-game"
        assert body["repo"] == "https://github.com/octo/my-game"
        assert body["status"] == "deploying"
        assert body["failedFiles"] == []
        assert fake_github.files == {"index.html": b"<html></html>", "style.css": b"body{}"}
        assert store.rows[0]["user_id"] == "user-1"
        assert store.rows[0]["url"] == "https://octo.github.io/my-game"
        assert list(scratch.iterdir()) == []

    def test_zip_root_folder_is_stripped(self, client, fake_github):
        archive = make_zip({"build/index.html": b"<html></html>", "build/js/game.js": b"run()"})
        response = upload(client, [("build.zip", archive, "application/zip")], game_name="Zipped")

        assert response.status_code == 200
        assert set(fake_github.files) == {"index.html", "js/game.js"}

    def test_generated_name(self, client, store):
        response = upload(client, [("index.html", b"<html></html>", "text/html")])
        assert response.status_code == 200
        assert response.json()["name"].startswith("game-")
        assert store.rows[0]["name"] == response.json()["name"]

    def test_failed_file_is_reported(self, client, fake_github):
        fake_github.fail_paths.add("big.png")
        response = upload(client, [
            ("index.html", b"<html></html>", "text/html"),
            ("big.png", b"PNG", "image/png"),
        ], game_name="Partial")
        assert response.status_code == 200
        assert response.json()["failedFiles"] == ["big.png"]

    def test_repository_creation_failure(self, client, fake_github, store, scratch):
        fake_github.create_status = 422
        response = upload(client, [("index.html", b"<html></html>", "text/html")], game_name="Taken")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to process upload"
        assert "Failed to create repository" in body["details"]
        assert store.rows == []
        assert list(scratch.iterdir()) == []

    def test_failure_includes_stack_in_debug(self, client, fake_github, monkeypatch):
        monkeypatch.setattr(config, "DEBUG", True)
        fake_github.create_status = 422
        response = upload(client, [("index.html", b"<html></html>", "text/html")], game_name="Taken")

        assert response.status_code == 500
        assert "Traceback" in response.json()["stack"]

    def test_failure_hides_stack_outside_debug(self, client, fake_github, monkeypatch):
        monkeypatch.setattr(config, "DEBUG", False)
        fake_github.create_status = 422
        response = upload(client, [("index.html", b"<html></html>", "text/html")], game_name="Taken")
        assert "stack" not in response.json()

    def test_database_failure(self, client, store):
        store.fail_with = GameStoreError("A game with this name already exists.", code="23505")
        response = upload(client, [("index.html", b"<html></html>", "text/html")], game_name="Dupe")

        assert response.status_code == 500
        assert response.json()["details"] == "A game with this name already exists."


class TestListGames:
    def test_lists_own_games(self, client, store):
        store.rows = [
            {"id": 1, "name": "Mine", "user_id": "user-1"},
            {"id": 2, "name": "Theirs", "user_id": "user-2"},
        ]
        response = client.get("/api/games", headers=AUTH)
        assert response.status_code == 200
        assert response.json() == {"games": [{"id": 1, "name": "Mine", "user_id": "user-1"}]}

    def test_store_failure(self, client, store):
        store.fail_with = GameStoreError("permission denied for table games", code="42501")
        response = client.get("/api/games", headers=AUTH)
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to fetch games"


def test_bundle_work_runs_off_the_event_loop(fake_github, store, scratch, monkeypatch):
    on_loop = []

    def loop_check(func):
        def wrapper(*args, **kwargs):
            try:
                asyncio.get_running_loop()
                on_loop.append((func.__name__, True))
            except RuntimeError:
                on_loop.append((func.__name__, False))
            return func(*args, **kwargs)
        return wrapper

    monkeypatch.setattr(app_module, "validate_upload", loop_check(app_module.validate_upload))
    monkeypatch.setattr(app_module, "build_deployment_zip", loop_check(app_module.build_deployment_zip))
    publisher = GitHubManager("test-token", "octo", transport=httpx.MockTransport(fake_github),
                              poll_attempts=1, poll_interval=0)
    manager = DeploymentManager(publisher, store, temp_dir=str(scratch))

    result = asyncio.run(manager.deploy(
        [UploadedAsset("index.html", b"<html></html>", "text/html")],
        "Threaded",
        AuthenticatedUser(id="user-1", email=None),
    ))

    assert result["url"] == "https://octo.github.io/threaded"
    assert on_loop == [("validate_upload", False), ("build_deployment_zip", False)]
    assert list(scratch.iterdir()) == []

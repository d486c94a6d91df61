import base64
import io
import json
import zipfile
from typing import Dict, List, Optional

import httpx
import pytest

from errors import AuthenticationError, GameStoreError
from github_manager import GitHubManager
from models import AuthenticatedUser


def make_zip(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


class FakeGitHub:
    """In-memory stand-in for the GitHub REST API, served through httpx.MockTransport."""

    def __init__(self, login: str = "octo"):
        self.login = login
        self.requests: List[httpx.Request] = []
        self.create_status = 201
        self.pages_post_status = 201
        self.protection_status = 200
        self.pages_statuses = ["building", "built"]
        self.fail_paths = set()
        self.files: Dict[str, bytes] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method

        if method == "GET" and path == "/user":
            return httpx.Response(200, json={"login": self.login})
        if method == "POST" and path == "/user/repos":
            name = json.loads(request.content)["name"]
            if self.create_status >= 300:
                return httpx.Response(self.create_status, json={"message": "name already exists on this account"})
            return httpx.Response(self.create_status, json={"full_name": f"{self.login}/{name}"})
        if method == "PUT" and "/contents/" in path:
            file_path = path.split("/contents/", 1)[1]
            if file_path in self.fail_paths:
                return httpx.Response(422, json={"message": "Invalid request"})
            body = json.loads(request.content)
            self.files[file_path] = base64.b64decode(body["content"])
            return httpx.Response(201, json={"content": {"path": file_path}})
        if path.endswith("/pages"):
            if method == "POST":
                return httpx.Response(self.pages_post_status, json={})
            status = self.pages_statuses.pop(0) if len(self.pages_statuses) > 1 else self.pages_statuses[0]
            return httpx.Response(200, json={"status": status})
        if path.endswith("/protection"):
            return httpx.Response(self.protection_status, json={})
        return httpx.Response(404, json={"message": "Not Found"})

    def calls(self, method: str, suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(suffix)]


class FakeIdentity:
    def __init__(self, tokens: Optional[Dict[str, AuthenticatedUser]] = None):
        self.tokens = tokens or {"good-token": AuthenticatedUser(id="user-1", email="player@example.com")}

    async def get_user(self, token: str) -> AuthenticatedUser:
        if token not in self.tokens:
            raise AuthenticationError("Invalid or expired token")
        return self.tokens[token]


class FakeStore:
    def __init__(self):
        self.rows: List[Dict] = []
        self.fail_with: Optional[GameStoreError] = None

    async def insert_game(self, name: str, url: str, repo_url: str, user_id: str) -> Dict:
        if self.fail_with:
            raise self.fail_with
        row = {"id": len(self.rows) + 1, "name": name, "url": url, "repo_url": repo_url,
               "user_id": user_id, "status": "active"}
        self.rows.append(row)
        return row

    async def list_games(self, user_id: str) -> List[Dict]:
        if self.fail_with:
            raise self.fail_with
        return [row for row in reversed(self.rows) if row["user_id"] == user_id]


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def github(fake_github):
    return GitHubManager("test-token", "octo", transport=httpx.MockTransport(fake_github),
                         poll_attempts=3, poll_interval=0)

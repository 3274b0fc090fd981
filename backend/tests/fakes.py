"""Test doubles for the durable store, GitHub and the Telegram Bot API."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from backend.models import UserRecord

TEST_TOKEN = "gho_test_token"
GOOD_CODE = "good-code"


def make_repo(name: str, owner: str = "octocat", private: bool = False) -> Dict[str, Any]:
    return {
        "name": name,
        "full_name": f"{owner}/{name}",
        "html_url": f"https://github.com/{owner}/{name}",
        "private": private,
        "description": f"{name} description",
        "stargazers_count": 3,
    }


class InMemoryUserStore:
    def __init__(self) -> None:
        self.records: Dict[str, UserRecord] = {}
        self.reads = 0
        self.writes = 0

    def ensure_schema(self) -> None:
        return None

    def get(self, chat_id: str) -> Optional[UserRecord]:
        self.reads += 1
        record = self.records.get(chat_id)
        return record.model_copy(deep=True) if record else None

    def save(self, record: UserRecord) -> UserRecord:
        self.writes += 1
        self.records[record.chat_id] = record.model_copy(deep=True)
        return record


class FakeUpstream:
    """Plays GitHub and the Telegram Bot API behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, str, str]] = []
        self.repos: List[Dict[str, Any]] = [make_repo("hello"), make_repo("spoon-knife")]
        self.profile: Optional[Dict[str, Any]] = {"id": 4242, "login": "octocat"}
        self.files: Dict[str, str] = {"README.md": "sha-readme", "docs/guide.md": "sha-guide"}
        self.sent_messages: List[Dict[str, Any]] = []
        self.answered_callbacks: List[str] = []
        self.telegram_down = False

    def github_calls(self, method: Optional[str] = None, path: Optional[str] = None) -> int:
        return sum(
            1
            for call_method, host, call_path in self.calls
            if host in {"github.com", "api.github.com"}
            and (method is None or call_method == method)
            and (path is None or call_path == path)
        )

    def handle(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        path = request.url.path
        self.calls.append((request.method, host, path))
        body = json.loads(request.read() or b"{}")
        if host == "api.telegram.org":
            return self._telegram(path, body)
        if host == "github.com" and path == "/login/oauth/access_token":
            if body.get("code") == GOOD_CODE:
                return httpx.Response(200, json={"access_token": TEST_TOKEN, "token_type": "bearer"})
            return httpx.Response(
                200,
                json={
                    "error": "bad_verification_code",
                    "error_description": "The code passed is incorrect or expired.",
                },
            )
        if host == "api.github.com":
            if request.headers.get("Authorization") != f"token {TEST_TOKEN}":
                return httpx.Response(401, json={"message": "Bad credentials"})
            return self._github(request.method, path, body)
        return httpx.Response(404, json={"message": "Not Found"})

    def _telegram(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        if self.telegram_down:
            return httpx.Response(502, json={"ok": False, "description": "Bad Gateway"})
        method = path.rsplit("/", 1)[-1]
        if method == "sendMessage":
            self.sent_messages.append(body)
        elif method == "answerCallbackQuery":
            self.answered_callbacks.append(body["callback_query_id"])
        return httpx.Response(200, json={"ok": True, "result": True})

    def _github(self, method: str, path: str, body: Dict[str, Any]) -> httpx.Response:
        if method == "GET" and path == "/user":
            return httpx.Response(200, json=self.profile)
        if method == "GET" and path == "/user/repos":
            return httpx.Response(200, json=list(self.repos))
        if method == "POST" and path == "/user/repos":
            if any(repo["name"] == body["name"] for repo in self.repos):
                return httpx.Response(422, json={"message": "Repository creation failed."})
            repo = make_repo(body["name"], private=body.get("private", False))
            repo["description"] = body.get("description")
            self.repos.insert(0, repo)
            return httpx.Response(201, json=repo)
        prefix = "/repos/octocat/hello/contents"
        if path.startswith(prefix):
            file_path = path[len(prefix):].strip("/")
            if method == "GET":
                return self._contents(file_path)
            if method == "DELETE" and self.files.get(file_path) == body.get("sha"):
                self.files.pop(file_path)
                return httpx.Response(
                    200,
                    json={"content": None, "commit": {"sha": "c0ffee", "html_url": "https://github.com/c"}},
                )
            return httpx.Response(409, json={"message": "sha does not match"})
        return httpx.Response(404, json={"message": "Not Found"})

    def _contents(self, file_path: str) -> httpx.Response:
        if file_path in self.files:
            return httpx.Response(
                200,
                json={
                    "type": "file",
                    "name": file_path.rsplit("/", 1)[-1],
                    "path": file_path,
                    "sha": self.files[file_path],
                    "size": 12,
                },
            )
        prefix = f"{file_path}/" if file_path else ""
        entries: Dict[str, Dict[str, Any]] = {}
        for candidate, sha in self.files.items():
            if not candidate.startswith(prefix):
                continue
            head, _, rest = candidate[len(prefix):].partition("/")
            entry_path = f"{prefix}{head}"
            if rest:
                entries[entry_path] = {"type": "dir", "name": head, "path": entry_path, "sha": "tree", "size": 0}
            else:
                entries[entry_path] = {"type": "file", "name": head, "path": entry_path, "sha": sha, "size": 12}
        if not entries:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json=list(entries.values()))


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from .errors import MissingParameter, UpstreamError
from .models import RepositorySummary, utc_now
from .snapshot import SnapshotStore, repos_key
from .users import UserDirectory

LOGGER = logging.getLogger("ghbridge.github")

GITHUB_MEDIA_TYPE = "application/vnd.github.v3+json"


def _github_headers(token: Optional[str]) -> Dict[str, str]:
    headers = {"Accept": GITHUB_MEDIA_TYPE}
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def _upstream_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"GitHub responded with HTTP {response.status_code}"


def split_repo_path(repo_path: str) -> Tuple[str, str]:
    owner, _, repo = (repo_path or "").strip().strip("/").partition("/")
    if not owner or not repo or "/" in repo:
        raise MissingParameter("repository (owner/repo)")
    return owner, repo


class GitHubApi:
    """Request forwarding to GitHub's OAuth and REST endpoints."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_base_url: str,
        oauth_base_url: str,
        client_id: str,
        client_secret: str,
    ) -> None:
        self._http = http_client
        self.api_base_url = api_base_url.rstrip("/")
        self.oauth_base_url = oauth_base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"GitHub request failed: {exc}") from exc
        if response.status_code >= 400:
            raise UpstreamError(_upstream_message(response), status=response.status_code)
        return response

    async def _api(
        self, method: str, path: str, token: str, **kwargs: Any
    ) -> Any:
        response = await self._send(
            method,
            f"{self.api_base_url}{path}",
            headers=_github_headers(token),
            **kwargs,
        )
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"GitHub returned invalid JSON for {path}") from exc

    def authorize_url(self, *, redirect_uri: str, scope: str, state: str) -> str:
        query = httpx.QueryParams(
            {
                "client_id": self.client_id,
                "scope": scope,
                "redirect_uri": redirect_uri,
                "state": state,
            }
        )
        return f"{self.oauth_base_url}/authorize?{query}"

    async def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        response = await self._send(
            "POST",
            f"{self.oauth_base_url}/access_token",
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            headers={"Accept": "application/json"},
        )
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    async def authenticated_user(self, token: str) -> Dict[str, Any]:
        profile = await self._api("GET", "/user", token)
        return profile if isinstance(profile, dict) else {}

    async def list_repositories(self, token: str) -> List[Dict[str, Any]]:
        return await self._api(
            "GET", "/user/repos", token, params={"per_page": 100, "sort": "updated"}
        )

    async def create_repository(self, token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._api("POST", "/user/repos", token, json=payload)

    async def get_contents(self, token: str, owner: str, repo: str, path: str = "") -> Any:
        suffix = f"/{quote(path.strip('/'))}" if path.strip("/") else ""
        return await self._api(
            "GET", f"/repos/{quote(owner)}/{quote(repo)}/contents{suffix}", token
        )

    async def delete_contents(
        self,
        token: str,
        owner: str,
        repo: str,
        path: str,
        *,
        message: str,
        sha: str,
    ) -> Dict[str, Any]:
        return await self._api(
            "DELETE",
            f"/repos/{quote(owner)}/{quote(repo)}/contents/{quote(path.strip('/'))}",
            token,
            json={"message": message, "sha": sha},
        )


def _parse_cached_at(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class GitHubGateway:
    """Forwards a linked user's calls to GitHub and caches the repo list."""

    def __init__(
        self,
        api: GitHubApi,
        users: UserDirectory,
        snapshot: SnapshotStore,
        *,
        cache_ttl_seconds: int = 300,
        invalidate_on_create: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.api = api
        self.users = users
        self.snapshot = snapshot
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.invalidate_on_create = invalidate_on_create
        self._clock = clock

    def _fresh_cached_repositories(self, chat_id: str) -> Optional[List[Dict[str, Any]]]:
        entry = self.snapshot.read(repos_key(chat_id))
        if not isinstance(entry, dict) or not isinstance(entry.get("data"), list):
            return None
        cached_at = _parse_cached_at(entry.get("cachedAt"))
        if cached_at is None or self._clock() - cached_at >= self.cache_ttl:
            return None
        return entry["data"]

    async def list_repositories(self, chat_id: str) -> List[Dict[str, Any]]:
        """Return the user's repositories as GitHub reports them.

        A cached list younger than the TTL is returned without touching
        GitHub. Both paths return the same shape: a list of repository
        objects.
        """
        user = self.users.require_linked(chat_id)
        cached = self._fresh_cached_repositories(chat_id)
        if cached is not None:
            LOGGER.debug("Repository cache hit chat_id=%s count=%s", chat_id, len(cached))
            return cached

        repos = await self.api.list_repositories(user.github_token)
        now = self._clock()
        self.users.save(
            user.with_updates(
                repositories=[RepositorySummary.from_github(repo) for repo in repos],
                last_active_at=now,
            )
        )
        self.snapshot.write(
            repos_key(chat_id), {"data": repos, "cachedAt": now.isoformat()}
        )
        LOGGER.info("Fetched repositories chat_id=%s count=%s", chat_id, len(repos))
        return repos

    async def create_repository(
        self,
        chat_id: str,
        name: str,
        description: str = "",
        private: bool = False,
    ) -> RepositorySummary:
        user = self.users.require_linked(chat_id)
        if not name or not name.strip():
            raise MissingParameter("name")
        created = await self.api.create_repository(
            user.github_token,
            {
                "name": name.strip(),
                "description": description or "",
                "private": bool(private),
                "auto_init": True,
            },
        )
        if self.invalidate_on_create:
            self.snapshot.delete(repos_key(chat_id))
        LOGGER.info("Created repository chat_id=%s full_name=%s", chat_id, created.get("full_name"))
        return RepositorySummary.from_github(created)

    async def list_files(
        self, chat_id: str, repo_path: str, path: str = ""
    ) -> List[Dict[str, Any]]:
        user = self.users.require_linked(chat_id)
        owner, repo = split_repo_path(repo_path)
        contents = await self.api.get_contents(user.github_token, owner, repo, path)
        if isinstance(contents, dict):
            contents = [contents]
        return [
            {
                "name": item.get("name"),
                "path": item.get("path"),
                "type": item.get("type"),
                "size": item.get("size", 0),
                "sha": item.get("sha"),
            }
            for item in contents or []
        ]

    async def delete_file(
        self,
        chat_id: str,
        repo_path: str,
        file_path: str,
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        user = self.users.require_linked(chat_id)
        owner, repo = split_repo_path(repo_path)
        if not file_path or not file_path.strip("/"):
            raise MissingParameter("file path")
        current = await self.api.get_contents(user.github_token, owner, repo, file_path)
        if not isinstance(current, dict) or current.get("type") != "file":
            raise UpstreamError(f"{file_path} is not a file in {owner}/{repo}", status=422)
        result = await self.api.delete_contents(
            user.github_token,
            owner,
            repo,
            file_path,
            message=message or f"Delete {file_path.strip('/')}",
            sha=current["sha"],
        )
        commit = (result or {}).get("commit") or {}
        LOGGER.info("Deleted file chat_id=%s repo=%s/%s path=%s", chat_id, owner, repo, file_path)
        return {
            "path": file_path.strip("/"),
            "commit_sha": commit.get("sha"),
            "commit_url": commit.get("html_url"),
        }

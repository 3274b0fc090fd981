from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .errors import AuthExchangeError, BridgeError, MissingParameter
from .github import GitHubApi
from .models import UserRecord, utc_now
from .snapshot import SnapshotStore, oauth_key, repos_key
from .telegram import TelegramClient
from .users import UserDirectory

LOGGER = logging.getLogger("ghbridge.linkage")

CALLBACK_PATH = "/auth/github/callback"


def _connected_message(username: str) -> str:
    return (
        "✅ *GitHub Account Connected!*\n\n"
        f"Successfully connected to GitHub account: *{username}*\n\n"
        "Now you can use all features:\n"
        "• /repos - List your repositories\n"
        "• /createrepo - Create new repository\n"
        "• /files - Manage repository files\n"
        "• /help - Show all commands"
    )


class LinkageService:
    """Owns the OAuth authorization-code flow for a chat identity.

    A chat moves Unlinked -> AuthorizationPending -> Linked. Authorizing
    again overwrites the stored token and leaves the chat Linked.
    """

    def __init__(
        self,
        api: GitHubApi,
        users: UserDirectory,
        snapshot: SnapshotStore,
        *,
        public_url: str,
        scope: str,
        notifier: Optional[TelegramClient] = None,
        clock: Callable = utc_now,
    ) -> None:
        self.api = api
        self.users = users
        self.snapshot = snapshot
        self.public_url = public_url.rstrip("/")
        self.scope = scope
        self.notifier = notifier
        self._clock = clock

    @property
    def redirect_uri(self) -> str:
        return f"{self.public_url}{CALLBACK_PATH}"

    def begin_authorization(self, chat_id: str) -> str:
        if not chat_id:
            raise MissingParameter("chat_id")
        # Diagnostic marker only; the callback trusts the echoed state.
        self.snapshot.write(
            oauth_key(chat_id),
            {"chatId": chat_id, "timestamp": int(time.time() * 1000)},
        )
        return self.api.authorize_url(
            redirect_uri=self.redirect_uri, scope=self.scope, state=chat_id
        )

    async def complete_authorization(self, code: str, chat_id: str) -> UserRecord:
        if not code:
            raise MissingParameter("code")
        if not chat_id:
            raise MissingParameter("state")

        token_payload = await self.api.exchange_code(code, self.redirect_uri)
        access_token = token_payload.get("access_token")
        if not access_token:
            reason = token_payload.get("error_description") or token_payload.get("error")
            raise AuthExchangeError(
                f"No access token returned by GitHub: {reason}" if reason else "No access token"
            )

        profile = await self.api.authenticated_user(access_token)
        now = self._clock()
        existing = self.users.get_fresh(chat_id)
        base = existing or UserRecord(chat_id=chat_id, created_at=now)
        user = self.users.save(
            base.with_updates(
                github_id=str(profile.get("id")) if profile.get("id") is not None else None,
                github_token=access_token,
                github_username=profile.get("login"),
                last_active_at=now,
            )
        )
        self.snapshot.delete(repos_key(chat_id))
        LOGGER.info("Linked chat_id=%s to github user=%s", chat_id, user.github_username)

        await self._notify_linked(user)
        return user

    async def _notify_linked(self, user: UserRecord) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send_message(
                user.chat_id, _connected_message(user.github_username or "unknown")
            )
        except BridgeError as exc:
            LOGGER.warning("Failed to notify chat_id=%s about linkage: %s", user.chat_id, exc)

    def get_user(self, chat_id: str) -> Optional[UserRecord]:
        return self.users.get(chat_id)

    def agree_to_terms(self, chat_id: str) -> UserRecord:
        now = self._clock()
        existing = self.users.get_fresh(chat_id)
        base = existing or UserRecord(chat_id=chat_id, created_at=now)
        user = self.users.save(base.with_updates(has_agreed=True, last_active_at=now))
        LOGGER.info("Terms accepted chat_id=%s", chat_id)
        return user

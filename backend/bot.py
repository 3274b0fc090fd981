from __future__ import annotations

import logging
import shlex
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import BridgeError, Unauthenticated
from .github import GitHubGateway, split_repo_path
from .linkage import LinkageService
from .snapshot import SnapshotStore
from .telegram import TelegramClient, callback_button, inline_keyboard, url_button

LOGGER = logging.getLogger("ghbridge.bot")

REPO_PREVIEW_LIMIT = 5
FILE_PREVIEW_LIMIT = 30
PROJECT_URL = "https://github.com/tukuexe/github-mng-bot"

HELP_COMMANDS = [
    "/start - Start the bot",
    "/connect - Connect GitHub account",
    "/repos - List your repositories",
    "/createrepo - Create new repository",
    "/newrepo [name] [desc] [private] - Create repo",
    "/files - File management",
    "/listfiles [owner/repo] [path] - List files",
    "/deletefile [owner/repo] [file] - Delete file",
    "/about - About this bot",
    "/help - Show this help",
]


def escape_markdown(value: Any) -> str:
    text = str(value)
    for char in ("_", "*", "`", "["):
        text = text.replace(char, f"\\{char}")
    return text


def _pending_delete_key(chat_id: str) -> str:
    return f"delete_{chat_id}"


def parse_arguments(text: str) -> List[str]:
    try:
        parts = shlex.split(text)
    except ValueError:
        parts = text.split()
    return parts[1:]


def parse_newrepo_arguments(args: List[str]) -> Dict[str, Any]:
    name = args[0]
    is_private = len(args) > 1 and args[-1].lower() == "private"
    description_parts = args[1:-1] if is_private else args[1:]
    return {
        "name": name,
        "description": " ".join(description_parts),
        "private": is_private,
    }


class Reply:
    """Where a handler answers: the chat of the incoming message or button."""

    def __init__(self, telegram: TelegramClient, chat_id: str) -> None:
        self.telegram = telegram
        self.chat_id = chat_id

    async def __call__(self, text: str, **kwargs: Any) -> Any:
        return await self.telegram.send_message(self.chat_id, text, **kwargs)


Handler = Callable[[str, Reply, List[str]], Awaitable[None]]


class BotHandlers:
    """Routes Telegram updates to commands and inline-button actions."""

    def __init__(
        self,
        linkage: LinkageService,
        gateway: GitHubGateway,
        telegram: TelegramClient,
        snapshot: SnapshotStore,
        *,
        public_url: str,
        agreement_url: str,
        bot_username: str,
        version: str,
    ) -> None:
        self.linkage = linkage
        self.gateway = gateway
        self.telegram = telegram
        self.snapshot = snapshot
        self.public_url = public_url.rstrip("/")
        self.agreement_url = agreement_url
        self.bot_username = bot_username
        self.version = version
        self.commands: Dict[str, Handler] = {
            "start": self.cmd_start,
            "connect": self.cmd_connect,
            "repos": self.cmd_repos,
            "createrepo": self.cmd_createrepo,
            "newrepo": self.cmd_newrepo,
            "files": self.cmd_files,
            "listfiles": self.cmd_listfiles,
            "deletefile": self.cmd_deletefile,
            "about": self.cmd_about,
            "help": self.cmd_help,
        }
        self.actions: Dict[str, Handler] = {
            "check_agreement": self.action_check_agreement,
            "connect_github": self.action_connect_github,
            "check_github_connection": self.action_check_connection,
            "list_repos": self.cmd_repos,
            "refresh_repos": self.cmd_repos,
            "create_repo": self.cmd_createrepo,
            "manage_files": self.cmd_files,
            "about_bot": self.cmd_about,
            "show_help": self.cmd_help,
            "delete_confirm": self.action_delete_confirm,
            "cancel_delete": self.action_cancel_delete,
        }

    def connect_url(self, chat_id: str) -> str:
        return f"{self.public_url}/auth/github?chat_id={chat_id}"

    async def handle_update(self, update: Dict[str, Any]) -> None:
        if "callback_query" in update:
            await self._handle_callback(update["callback_query"])
        elif "message" in update:
            await self._handle_message(update["message"])

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        text = (message.get("text") or "").strip()
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        if not text.startswith("/") or "id" not in sender:
            return
        chat_id = str(sender["id"])
        reply = Reply(self.telegram, str(chat.get("id", chat_id)))
        command = text.split()[0][1:].split("@", 1)[0].lower()
        handler = self.commands.get(command)
        if handler is None:
            await reply("Unknown command. Use /help for all available commands.", parse_mode=None)
            return
        await self._run(handler, chat_id, reply, parse_arguments(text), f"/{command}")

    async def _handle_callback(self, query: Dict[str, Any]) -> None:
        sender = query.get("from") or {}
        if "id" not in sender:
            return
        chat_id = str(sender["id"])
        chat = (query.get("message") or {}).get("chat") or {}
        reply = Reply(self.telegram, str(chat.get("id", chat_id)))
        action = query.get("data") or ""
        try:
            await self.telegram.answer_callback_query(str(query.get("id", "")))
        except BridgeError as exc:
            LOGGER.warning("Failed to answer callback query action=%s: %s", action, exc)
        handler = self.actions.get(action)
        if handler is None:
            LOGGER.info("Ignoring unknown action=%s chat_id=%s", action, chat_id)
            return
        await self._run(handler, chat_id, reply, [], action)

    async def _run(
        self, handler: Handler, chat_id: str, reply: Reply, args: List[str], name: str
    ) -> None:
        try:
            await handler(chat_id, reply, args)
        except Unauthenticated:
            await self._reply_quietly(
                reply,
                name,
                "❌ *No GitHub Connection*\n\n"
                "Please connect your GitHub account first:\n\n/connect"
            )
        except BridgeError as exc:
            LOGGER.warning("Handler %s failed chat_id=%s: %s", name, chat_id, exc)
            await self._reply_quietly(reply, name, f"❌ *Error*\n\n{escape_markdown(exc.message)}")
        except Exception:
            LOGGER.exception("Bot error in %s chat_id=%s", name, chat_id)
            await self._reply_quietly(
                reply, name, "❌ An error occurred. Please try again.", parse_mode=None
            )

    async def _reply_quietly(self, reply: Reply, name: str, text: str, **options: Any) -> None:
        try:
            await reply(text, **options)
        except BridgeError as exc:
            LOGGER.error("Failed to report %s failure to chat_id=%s: %s", name, reply.chat_id, exc)

    async def send_agreement(self, chat_id: str, reply: Reply) -> None:
        agreement_url = f"{self.agreement_url}?chat_id={chat_id}"
        await reply(
            "📜 *Welcome to GitHub Management Bot!*\n\n"
            "Before we begin, you need to agree to our Terms of Service.\n\n"
            f"*Please visit:*\n{agreement_url}\n\n"
            "After agreeing, return here and tap \"✅ I've Agreed\" below.",
            reply_markup=inline_keyboard(
                [
                    [url_button("📖 Read & Agree", agreement_url)],
                    [callback_button("✅ I've Agreed", "check_agreement")],
                ]
            ),
        )

    async def send_connect_prompt(self, reply: Reply) -> None:
        await reply(
            "🔗 *Connect Your GitHub Account*\n\n"
            "To use all features, connect your GitHub account:\n\n"
            "Use command: /connect\n\n"
            "Or tap the button below to connect now.",
            reply_markup=inline_keyboard(
                [[callback_button("🔗 Connect GitHub", "connect_github")]]
            ),
        )

    async def send_main_menu(self, reply: Reply) -> None:
        await reply(
            "🎯 *GitHub Management Bot*\n\nSelect what you want to do:",
            reply_markup=inline_keyboard(
                [
                    [
                        callback_button("📚 My Repos", "list_repos"),
                        callback_button("➕ Create Repo", "create_repo"),
                    ],
                    [callback_button("📁 Files", "manage_files")],
                    [
                        callback_button("ℹ️ About", "about_bot"),
                        callback_button("🆘 Help", "show_help"),
                    ],
                ]
            ),
        )

    async def cmd_start(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        user = self.linkage.get_user(chat_id)
        if user is None or not user.has_agreed:
            await self.send_agreement(chat_id, reply)
        elif user.github_token:
            await self.send_main_menu(reply)
        else:
            await self.send_connect_prompt(reply)

    async def cmd_connect(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        auth_url = self.connect_url(chat_id)
        await reply(
            "🔐 *Connect GitHub Account*\n\n"
            f"Click the link below to authorize:\n\n{auth_url}\n\n"
            "After authorization, return here.",
            reply_markup=inline_keyboard(
                [
                    [url_button("🔗 Authorize GitHub", auth_url)],
                    [callback_button("✅ Check Connection", "check_github_connection")],
                ]
            ),
        )

    async def cmd_repos(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        repos = await self.gateway.list_repositories(chat_id)
        if not repos:
            await reply(
                "📭 *No Repositories Found*\n\n"
                "You don't have any repositories yet.\n\n"
                "Create one with /createrepo"
            )
            return
        lines = [f"📚 *Your Repositories ({len(repos)})*", ""]
        for index, repo in enumerate(repos[:REPO_PREVIEW_LIMIT], start=1):
            lines.append(f"{index}. *{escape_markdown(repo.get('full_name', ''))}*")
            lines.append(f"   📝 {escape_markdown(repo.get('description') or 'No description')}")
            lines.append(f"   🌟 {repo.get('stargazers_count', 0)} stars")
            lines.append(f"   {'🔒 Private' if repo.get('private') else '🌐 Public'}")
            lines.append("")
        if len(repos) > REPO_PREVIEW_LIMIT:
            lines.append(f"... and {len(repos) - REPO_PREVIEW_LIMIT} more repositories.")
        await reply(
            "\n".join(lines),
            reply_markup=inline_keyboard([[callback_button("🔄 Refresh", "refresh_repos")]]),
        )

    async def cmd_createrepo(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        await reply(
            "🆕 *Create New Repository*\n\n"
            "To create a repository, use:\n\n"
            "`/newrepo [name] [description] [private]`\n\n"
            "*Example:*\n"
            "`/newrepo my-project \"My awesome project\" private`\n"
            "`/newrepo open-source \"Open source project\"`\n\n"
            "Or use the web interface:",
            reply_markup=inline_keyboard(
                [[url_button("🌐 Create on GitHub", "https://github.com/new")]]
            ),
        )

    async def cmd_newrepo(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        if not args:
            await reply(
                "❌ *Usage:*\n`/newrepo [name] [description] [private]`\n\n"
                "*Example:*\n`/newrepo my-project \"My project\" private`"
            )
            return
        options = parse_newrepo_arguments(args)
        repo = await self.gateway.create_repository(
            chat_id, options["name"], options["description"], options["private"]
        )
        reply_markup = (
            inline_keyboard([[url_button("🔗 Open Repository", repo.url)]]) if repo.url else None
        )
        await reply(
            "✅ *Repository Created!*\n\n"
            f"*Name:* {escape_markdown(repo.full_name)}\n"
            f"*URL:* {escape_markdown(repo.url or '')}\n"
            f"*Status:* {'🔒 Private' if repo.private else '🌐 Public'}\n\n"
            "You can now push code to this repository.",
            reply_markup=reply_markup,
        )

    async def cmd_files(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        await reply(
            "📁 *Manage Repository Files*\n\n"
            "To view files, use:\n\n`/listfiles [owner]/[repo] [path]`\n\n"
            "*Example:*\n`/listfiles octocat/Hello-World`\n\n"
            "To delete a file:\n`/deletefile [owner]/[repo] [file-path]`"
        )

    async def cmd_listfiles(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        if not args:
            await reply(
                "❌ *Usage:*\n`/listfiles [owner]/[repo] [path]`\n\n"
                "*Example:*\n`/listfiles octocat/Hello-World docs`"
            )
            return
        repo_path = args[0]
        path = args[1] if len(args) > 1 else ""
        entries = await self.gateway.list_files(chat_id, repo_path, path)
        location = f"{repo_path}/{path.strip('/')}" if path.strip("/") else repo_path
        if not entries:
            await reply(f"📭 No files found in `{location}`.")
            return
        lines = [f"📁 *{escape_markdown(location)}* ({len(entries)} entries)", ""]
        for entry in entries[:FILE_PREVIEW_LIMIT]:
            icon = "📂" if entry["type"] == "dir" else "📄"
            lines.append(f"{icon} `{entry['path']}`")
        if len(entries) > FILE_PREVIEW_LIMIT:
            lines.append(f"\n... and {len(entries) - FILE_PREVIEW_LIMIT} more entries.")
        await reply("\n".join(lines))

    async def cmd_deletefile(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        if len(args) < 2:
            await reply(
                "❌ *Usage:*\n`/deletefile [owner]/[repo] [file-path]`\n\n"
                "*Example:*\n`/deletefile octocat/Hello-World README.md`"
            )
            return
        repo_path, file_path = args[0], args[1]
        split_repo_path(repo_path)
        self.snapshot.write(
            _pending_delete_key(chat_id), {"repo": repo_path, "path": file_path}
        )
        await reply(
            "⚠️ *Delete File*\n\n"
            f"Repository: `{repo_path}`\n"
            f"File: `{file_path}`\n\n"
            "Are you sure you want to delete this file?",
            reply_markup=inline_keyboard(
                [
                    [
                        callback_button("✅ Yes, Delete", "delete_confirm"),
                        callback_button("❌ Cancel", "cancel_delete"),
                    ]
                ]
            ),
        )

    async def action_delete_confirm(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        pending = self.snapshot.read(_pending_delete_key(chat_id))
        if not isinstance(pending, dict) or not pending.get("repo"):
            await reply("Nothing to delete. Use /deletefile first.", parse_mode=None)
            return
        self.snapshot.delete(_pending_delete_key(chat_id))
        result = await self.gateway.delete_file(chat_id, pending["repo"], pending.get("path", ""))
        await reply(
            "🗑️ *File Deleted*\n\n"
            f"Repository: `{pending['repo']}`\n"
            f"File: `{result['path']}`"
        )

    async def action_cancel_delete(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        self.snapshot.delete(_pending_delete_key(chat_id))
        await reply("❎ Deletion cancelled.", parse_mode=None)

    async def cmd_about(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        await reply(
            "🤖 *GitHub Management Bot*\n\n"
            f"Version: {self.version}\n"
            f"Bot: @{escape_markdown(self.bot_username)}\n\n"
            "*Features:*\n"
            "• 📚 List & manage repositories\n"
            "• 🆕 Create new repositories\n"
            "• 📁 File management",
            disable_web_page_preview=True,
            reply_markup=inline_keyboard([[url_button("🌟 Star on GitHub", PROJECT_URL)]]),
        )

    async def cmd_help(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        await reply(
            "🆘 Available Commands:\n\n" + "\n".join(HELP_COMMANDS),
            parse_mode=None,
            disable_web_page_preview=True,
        )

    async def action_check_agreement(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        user = self.linkage.get_user(chat_id)
        if user is not None and user.has_agreed:
            await reply("✅ *Agreement confirmed!*\n\nNow let's connect your GitHub account.")
            await self.send_connect_prompt(reply)
        else:
            await reply(
                "❌ You haven't agreed yet. Please click the link and agree first.",
                parse_mode=None,
            )

    async def action_connect_github(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        auth_url = self.connect_url(chat_id)
        await reply(
            f"Click the link to authorize:\n{auth_url}",
            parse_mode=None,
            reply_markup=inline_keyboard(
                [
                    [url_button("🔗 Authorize", auth_url)],
                    [callback_button("✅ Done", "check_github_connection")],
                ]
            ),
        )

    async def action_check_connection(self, chat_id: str, reply: Reply, args: List[str]) -> None:
        user = self.linkage.users.get_fresh(chat_id)
        if user is not None and user.github_token:
            await reply(
                "✅ *GitHub Connected!*\n\n"
                f"Username: {escape_markdown(user.github_username or '')}\n\n"
                "Now you can use all features. Try /repos to see your repositories."
            )
            await self.send_main_menu(reply)
        else:
            await reply("❌ Not connected yet. Please use /connect first.", parse_mode=None)


def extract_chat_id(update: Dict[str, Any]) -> Optional[str]:
    source = update.get("message") or update.get("callback_query") or {}
    sender = source.get("from") or {}
    return str(sender["id"]) if "id" in sender else None

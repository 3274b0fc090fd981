from __future__ import annotations

import html
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
import httpx

from . import config
from .bot import BotHandlers, extract_chat_id
from .errors import BridgeError, MissingParameter, StoreWriteError
from .github import GitHubApi, GitHubGateway
from .linkage import CALLBACK_PATH, LinkageService
from .models import (
    AgreeRequest,
    AgreeResponse,
    RepoCreateRequest,
    RepoListRequest,
    RepositorySummary,
)
from .snapshot import SnapshotStore
from .store import UserStore
from .telegram import TelegramClient
from .users import UserDirectory

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
LOGGER = logging.getLogger("ghbridge")


PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
</head>
<body>
<main>
<h1>{title}</h1>
{body}
</main>
</body>
</html>
"""

AGREEMENT_BODY = """<p>By continuing you allow this bot to act on your GitHub account
with the scopes you grant: listing and creating repositories and deleting
repository files on your request. Your GitHub token is stored only to perform
those actions.</p>
<form id="agree-form">
<button type="submit">I agree</button>
</form>
<p id="agree-status"></p>
<script>
const params = new URLSearchParams(window.location.search);
document.getElementById("agree-form").addEventListener("submit", async (event) => {
  event.preventDefault();
  const response = await fetch("/api/user/agree", {
    method: "POST",
    headers: {"Content-Type": "application/json"},
    body: JSON.stringify({chat_id: params.get("chat_id") || ""}),
  });
  const payload = await response.json();
  document.getElementById("agree-status").textContent = response.ok
    ? "Agreement accepted. Return to Telegram and tap \\"I've Agreed\\"."
    : (payload.detail || "Something went wrong.");
});
</script>
"""


def _render_page(title: str, body: str) -> HTMLResponse:
    return HTMLResponse(PAGE_TEMPLATE.format(title=html.escape(title), body=body))


class Services:
    """Everything a request handler needs, built once per app."""

    def __init__(
        self,
        *,
        snapshot: SnapshotStore,
        store: UserStore,
        http_client: httpx.AsyncClient,
        telegram: TelegramClient,
        linkage: LinkageService,
        gateway: GitHubGateway,
        bot: BotHandlers,
    ) -> None:
        self.snapshot = snapshot
        self.store = store
        self.http_client = http_client
        self.telegram = telegram
        self.linkage = linkage
        self.gateway = gateway
        self.bot = bot


def build_services(
    *,
    store: Optional[UserStore] = None,
    snapshot: Optional[SnapshotStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Optional[Any] = None,
    invalidate_on_create: Optional[bool] = None,
) -> Services:
    if snapshot is None:
        snapshot = SnapshotStore(config.SNAPSHOT_PATH)
    if store is None:
        store = UserStore(
            host=config.MYSQL_HOST,
            port=config.MYSQL_PORT,
            user=config.MYSQL_USER,
            password=config.MYSQL_PASSWORD,
            database=config.MYSQL_DATABASE,
        )
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)
    users = UserDirectory(store, snapshot)
    telegram = TelegramClient(
        config.TELEGRAM_BOT_TOKEN, http_client, base_url=config.TELEGRAM_API_BASE_URL
    )
    api = GitHubApi(
        http_client,
        api_base_url=config.GITHUB_API_BASE_URL,
        oauth_base_url=config.GITHUB_OAUTH_BASE_URL,
        client_id=config.GITHUB_CLIENT_ID,
        client_secret=config.GITHUB_CLIENT_SECRET,
    )
    clock_kwargs = {"clock": clock} if clock is not None else {}
    linkage = LinkageService(
        api,
        users,
        snapshot,
        public_url=config.PUBLIC_URL,
        scope=config.GITHUB_OAUTH_SCOPE,
        notifier=telegram,
        **clock_kwargs,
    )
    gateway = GitHubGateway(
        api,
        users,
        snapshot,
        cache_ttl_seconds=config.REPO_CACHE_TTL_SECONDS,
        invalidate_on_create=(
            config.INVALIDATE_REPO_CACHE_ON_CREATE
            if invalidate_on_create is None
            else invalidate_on_create
        ),
        **clock_kwargs,
    )
    bot = BotHandlers(
        linkage,
        gateway,
        telegram,
        snapshot,
        public_url=config.PUBLIC_URL,
        agreement_url=config.AGREEMENT_URL,
        bot_username=config.BOT_USERNAME,
        version=config.SERVICE_VERSION,
    )
    return Services(
        snapshot=snapshot,
        store=store,
        http_client=http_client,
        telegram=telegram,
        linkage=linkage,
        gateway=gateway,
        bot=bot,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Optional[Services] = None, *, register_webhook: bool = True) -> FastAPI:
    app = FastAPI(title=config.SERVICE_NAME, version=config.SERVICE_VERSION)
    app.state.services = services if services is not None else build_services()

    @app.exception_handler(BridgeError)
    async def _bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        LOGGER.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.on_event("startup")
    async def _startup() -> None:
        current = app.state.services
        try:
            current.store.ensure_schema()
        except StoreWriteError as exc:
            LOGGER.warning("Failed to ensure database schema: %s", exc)
        if register_webhook and config.WEBHOOK_URL:
            try:
                await current.telegram.set_webhook(f"{config.WEBHOOK_URL}{config.WEBHOOK_PATH}")
            except BridgeError as exc:
                LOGGER.error("Error setting webhook: %s", exc)
        LOGGER.info("Public URL: %s", config.PUBLIC_URL)
        LOGGER.info("Bot: @%s", config.BOT_USERNAME)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.services.http_client.aclose()

    @app.get("/", response_class=HTMLResponse)
    @app.get("/agreement", response_class=HTMLResponse)
    def agreement_page() -> HTMLResponse:
        return _render_page("Terms of Service", AGREEMENT_BODY)

    @app.get("/success", response_class=HTMLResponse)
    def success_page() -> HTMLResponse:
        return _render_page(
            "GitHub Connected",
            "<p>Your GitHub account is connected. You can return to Telegram now.</p>",
        )

    @app.get("/error", response_class=HTMLResponse)
    def error_page(error: str = "Unknown error") -> HTMLResponse:
        return _render_page("Something went wrong", f"<p>{html.escape(error)}</p>")

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": config.SERVICE_NAME,
        }

    @app.post("/api/user/agree", response_model=AgreeResponse)
    def user_agree(
        payload: AgreeRequest, services: Services = Depends(get_services)
    ) -> AgreeResponse:
        if not payload.chat_id:
            raise MissingParameter("chat_id")
        services.linkage.agree_to_terms(payload.chat_id)
        return AgreeResponse(success=True, message="Agreement accepted")

    @app.get("/api/user/{chat_id}")
    def user_get(chat_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
        user = services.linkage.get_user(chat_id)
        return user.public_view() if user else {}

    @app.get("/auth/github")
    def auth_github(
        chat_id: str = "", services: Services = Depends(get_services)
    ) -> RedirectResponse:
        if not chat_id:
            return RedirectResponse(url="/error?error=" + quote("No Telegram ID"))
        return RedirectResponse(url=services.linkage.begin_authorization(chat_id))

    @app.get(CALLBACK_PATH)
    async def auth_github_callback(
        code: str = "", state: str = "", services: Services = Depends(get_services)
    ) -> RedirectResponse:
        try:
            user = await services.linkage.complete_authorization(code, state)
        except BridgeError as exc:
            LOGGER.warning("GitHub OAuth failed chat_id=%s: %s", state or "-", exc)
            return RedirectResponse(url="/error?error=" + quote(exc.message))
        return RedirectResponse(url="/success?chat_id=" + quote(user.chat_id))

    @app.post("/api/github/repos")
    async def github_repos(
        payload: RepoListRequest, services: Services = Depends(get_services)
    ) -> Any:
        return await services.gateway.list_repositories(payload.chat_id)

    @app.post("/api/github/repos/create", response_model=RepositorySummary)
    async def github_repo_create(
        payload: RepoCreateRequest, services: Services = Depends(get_services)
    ) -> RepositorySummary:
        return await services.gateway.create_repository(
            payload.chat_id, payload.name, payload.description, payload.private
        )

    @app.post(config.WEBHOOK_PATH)
    async def bot_webhook(
        update: Dict[str, Any], services: Services = Depends(get_services)
    ) -> Dict[str, bool]:
        LOGGER.debug("Update %s from chat_id=%s", update.get("update_id"), extract_chat_id(update))
        try:
            await services.bot.handle_update(update)
        except BridgeError as exc:
            LOGGER.error("Update %s not handled: %s", update.get("update_id"), exc)
        return {"ok": True}

    return app


app = create_app()

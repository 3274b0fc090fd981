from __future__ import annotations

import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SERVICE_NAME = os.getenv("SERVICE_NAME", "GitHub Management Bot")
SERVICE_VERSION = "1.0.0"

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_API_BASE_URL = os.getenv("TELEGRAM_API_BASE_URL", "https://api.telegram.org")
BOT_USERNAME = os.getenv("BOT_USERNAME", "GitHubmngbot")

GITHUB_CLIENT_ID = os.getenv("GITHUB_CLIENT_ID", "")
GITHUB_CLIENT_SECRET = os.getenv("GITHUB_CLIENT_SECRET", "")
GITHUB_API_BASE_URL = os.getenv("GITHUB_API_BASE_URL", "https://api.github.com")
GITHUB_OAUTH_BASE_URL = os.getenv("GITHUB_OAUTH_BASE_URL", "https://github.com/login/oauth")
GITHUB_OAUTH_SCOPE = os.getenv("GITHUB_OAUTH_SCOPE", "user repo delete_repo")

PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:3000").rstrip("/")
AGREEMENT_URL = os.getenv("AGREEMENT_URL", f"{PUBLIC_URL}/agreement")
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "").rstrip("/")
WEBHOOK_PATH = "/bot-webhook"

SNAPSHOT_PATH = os.getenv(
    "SNAPSHOT_PATH", os.path.join(os.path.dirname(__file__), "data.json")
)
REPO_CACHE_TTL_SECONDS = int(os.getenv("REPO_CACHE_TTL_SECONDS", "300"))
INVALIDATE_REPO_CACHE_ON_CREATE = (
    os.getenv("INVALIDATE_REPO_CACHE_ON_CREATE", "true").lower() == "true"
)
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

MYSQL_HOST = os.getenv("MYSQL_HOST", "localhost")
MYSQL_PORT = int(os.getenv("MYSQL_PORT", "3306"))
MYSQL_USER = os.getenv("MYSQL_USER", "ghbridge")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "ghbridge_password")
MYSQL_DATABASE = os.getenv("MYSQL_DATABASE", "ghbridge")

"""Errors raised by the linkage, store and gateway layers.

Each error carries the HTTP status the API boundary answers with. The bot
front end renders ``str(error)`` to the user instead.
"""

from __future__ import annotations

from typing import Optional


class BridgeError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingParameter(BridgeError):
    """Raised when a required input (code, chat id, repo name) is absent."""

    status_code = 400

    def __init__(self, name: str) -> None:
        self.parameter = name
        super().__init__(f"Missing parameter: {name}")


class Unauthenticated(BridgeError):
    """Raised when an operation needs a linked GitHub account."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class AuthExchangeError(BridgeError):
    status_code = 502


class UpstreamError(BridgeError):
    """Network failure or non-2xx answer from GitHub or Telegram."""

    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class StoreReadError(BridgeError):
    status_code = 503


class StoreWriteError(BridgeError):
    status_code = 503

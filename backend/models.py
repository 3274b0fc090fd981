from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RepositorySummary(BaseModel):
    name: str
    full_name: str
    url: Optional[str] = None
    private: bool = False

    @classmethod
    def from_github(cls, payload: Dict[str, Any]) -> "RepositorySummary":
        return cls(
            name=payload.get("name") or "",
            full_name=payload.get("full_name") or "",
            url=payload.get("html_url"),
            private=bool(payload.get("private")),
        )


class UserRecord(BaseModel):
    chat_id: str
    github_id: Optional[str] = None
    github_token: Optional[str] = None
    github_username: Optional[str] = None
    has_agreed: bool = False
    is_linked: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    last_active_at: datetime = Field(default_factory=utc_now)
    repositories: List[RepositorySummary] = Field(default_factory=list)

    @model_validator(mode="after")
    def _sync_linked_flag(self) -> "UserRecord":
        self.is_linked = bool(self.github_token)
        return self

    def with_updates(self, **changes: Any) -> "UserRecord":
        payload = self.model_dump()
        payload.update(changes)
        return UserRecord.model_validate(payload)

    def public_view(self) -> Dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload.pop("github_token", None)
        return payload


class AgreeRequest(BaseModel):
    chat_id: str = ""


class AgreeResponse(BaseModel):
    success: bool
    message: str


class RepoListRequest(BaseModel):
    chat_id: str = ""


class RepoCreateRequest(BaseModel):
    chat_id: str = ""
    name: str = ""
    description: str = ""
    private: bool = False

"""
gateway/http_api.py — HTTP Call Descriptors

An HttpCall names one REST request against the Discord API (method + path +
optional JSON body and query params). The runner turns it into a concrete
HttpRequest by attaching the bot's credential and the two fixed
identification headers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}


class HttpCall(BaseModel):
    """One REST call, relative to the API base URL."""
    method: str
    path: str
    body: Optional[Any] = None
    params: dict[str, str] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def _known_method(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _METHODS:
            raise ValueError(f"Unsupported HTTP method '{v}'")
        return upper

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"path must start with '/', got '{v}'")
        return v

    def url(self, base_url: str) -> str:
        return base_url.rstrip("/") + self.path


@dataclass
class HttpRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: bytes = b""
    params: dict[str, str] = field(default_factory=dict)


@dataclass
class HttpResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


def make_headers(token: str, user_agent: str) -> dict[str, str]:
    return {
        "Authorization": f"Bot {token}",
        "Content-Type": "application/json",
        "User-Agent": user_agent,
    }


def build_request(call: HttpCall, token: str, base_url: str, user_agent: str) -> HttpRequest:
    """Attach credential and identification headers to a call."""
    body = b"" if call.body is None else json.dumps(call.body).encode("utf-8")
    return HttpRequest(
        method=call.method,
        url=call.url(base_url),
        headers=make_headers(token, user_agent),
        body=body,
        params=dict(call.params),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Factory helpers for the calls the bundled bots make
# ─────────────────────────────────────────────────────────────────────────────

def make_create_message(channel_id: str, content: str, **extra: Any) -> HttpCall:
    """POST a new message to a channel."""
    return HttpCall(
        method="POST",
        path=f"/channels/{channel_id}/messages",
        body={"content": content, **extra},
    )


def make_delete_message(channel_id: str, message_id: str) -> HttpCall:
    return HttpCall(method="DELETE", path=f"/channels/{channel_id}/messages/{message_id}")


def make_interaction_response(
    interaction_id: str,
    interaction_token: str,
    *,
    response_type: int = 4,
    content: Optional[str] = None,
    data: Optional[dict[str, Any]] = None,
) -> HttpCall:
    """
    Respond to an interaction. Type 4 is CHANNEL_MESSAGE_WITH_SOURCE.

    `content` is a shortcut for data={"content": content}.
    """
    payload: dict[str, Any] = {"type": response_type}
    callback_data = dict(data or {})
    if content is not None:
        callback_data["content"] = content
    if callback_data:
        payload["data"] = callback_data
    return HttpCall(
        method="POST",
        path=f"/interactions/{interaction_id}/{interaction_token}/callback",
        body=payload,
    )


def make_create_application_command(
    application_id: str,
    name: str,
    description: str,
    *,
    options: Optional[list[dict[str, Any]]] = None,
    guild_id: Optional[str] = None,
    command_type: int = 1,
) -> HttpCall:
    """Register a slash command, globally or for one guild."""
    if guild_id:
        path = f"/applications/{application_id}/guilds/{guild_id}/commands"
    else:
        path = f"/applications/{application_id}/commands"
    body: dict[str, Any] = {"name": name, "description": description, "type": command_type}
    if options:
        body["options"] = options
    return HttpCall(method="POST", path=path, body=body)

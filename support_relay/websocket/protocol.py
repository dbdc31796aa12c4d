"""WebSocket message envelopes and inbound payload models"""
from __future__ import annotations

import json
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from support_relay.domain.constants import Role, ROLE_ADMIN, ROLE_USER
from support_relay.domain.exceptions import MalformedEvent


class WsInbound(BaseModel):
    """Client to server envelope"""

    type: str  # join | message | typing | markAsRead
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Server to client envelope"""

    type: str  # adminJoined | userJoined | message | newUser | userLeft | typing | helpRequest | error
    data: dict[str, Any] = {}


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class JoinData(_Payload):
    username: str = Field(min_length=1)
    role: Role | None = None
    is_admin: bool = Field(default=False, alias="isAdmin")
    room_id: str | None = Field(default=None, alias="roomId")

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value

    @property
    def resolved_role(self) -> Role:
        if self.role is not None:
            return self.role
        return ROLE_ADMIN if self.is_admin else ROLE_USER


class MessageData(_Payload):
    body: str = Field(min_length=1, validation_alias=AliasChoices("body", "message"))
    target_username: str | None = Field(default=None, alias="targetUsername")
    room_id: str | None = Field(default=None, alias="roomId")

    @field_validator("body")
    @classmethod
    def _reject_blank_body(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message body must not be blank")
        return value


class TypingData(_Payload):
    is_typing: bool = Field(alias="isTyping")
    target_username: str | None = Field(default=None, alias="targetUsername")


class MarkAsReadData(_Payload):
    room_id: str = Field(min_length=1, alias="roomId")


def parse_envelope(raw: str) -> WsInbound:
    """Decode a text frame into an envelope, raising MalformedEvent on bad input"""
    try:
        return WsInbound.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise MalformedEvent(f"invalid envelope: {e}") from e


def parse_payload(model: type[_Payload], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedEvent(f"invalid {model.__name__}: {e}") from e

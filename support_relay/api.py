"""REST endpoints around the store, used by the UI rather than the relay core"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from support_relay.database.chat_database import ChatDatabase
from support_relay.domain.constants import HELP_PENDING, HelpRequestStatus
from support_relay.events.conversation_index import ConversationIndex
from support_relay.events.lifecycle import SessionLifecycle
from support_relay.websocket.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateUserRequest(_Request):
    username: str = Field(min_length=1)
    is_admin: bool = Field(default=False, alias="isAdmin")


class CreateHelpRequest(_Request):
    username: str = Field(min_length=1)
    room_id: str | None = Field(default=None, alias="roomId")
    message: str = Field(min_length=1)
    status: HelpRequestStatus = HELP_PENDING


class UpdateHelpRequest(_Request):
    status: HelpRequestStatus


def _db(request: Request) -> ChatDatabase:
    return request.app.state.db


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    registry: ConnectionRegistry = request.app.state.registry
    return {"status": "ok", "connections": registry.count()}


@router.post("/users")
async def create_user(payload: CreateUserRequest, request: Request) -> dict[str, Any]:
    db = _db(request)
    username = payload.username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="Invalid user data")
    if await db.get_user_by_username(username):
        raise HTTPException(status_code=400, detail="Username already exists")
    user = await db.create_user(username, payload.is_admin)
    return user.to_dict()


@router.get("/users/{username}")
async def get_user(username: str, request: Request) -> dict[str, Any]:
    user = await _db(request).get_user_by_username(username)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user.to_dict()


@router.get("/admin/users")
async def list_conversations(request: Request) -> list[dict[str, Any]]:
    index: ConversationIndex = request.app.state.index
    return [entry.to_dict() for entry in index.snapshot()]


@router.get("/admin/online-users")
async def list_online_users(request: Request) -> list[dict[str, Any]]:
    return [record.to_dict() for record in await _db(request).list_presence()]


@router.get("/messages/{room_id}")
async def list_room_messages(room_id: str, request: Request) -> list[dict[str, Any]]:
    return [message.to_dict() for message in await _db(request).list_messages_for_room(room_id)]


@router.post("/help-requests")
async def create_help_request(payload: CreateHelpRequest, request: Request) -> dict[str, Any]:
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    help_request = await _db(request).create_help_request(
        username=payload.username,
        room_id=payload.room_id or payload.username,
        message=payload.message,
        status=payload.status,
    )
    notified = lifecycle.announce_help_request(help_request)
    logger.info("Help request %d from %s announced to %d admin connections",
                help_request.id, help_request.username, notified)
    return help_request.to_dict()


@router.get("/help-requests")
async def list_help_requests(request: Request) -> list[dict[str, Any]]:
    return [help_request.to_dict() for help_request in await _db(request).list_help_requests()]


@router.patch("/help-requests/{request_id}")
async def update_help_request(request_id: int, payload: UpdateHelpRequest, request: Request) -> dict[str, Any]:
    help_request = await _db(request).update_help_request_status(request_id, payload.status)
    if not help_request:
        raise HTTPException(status_code=404, detail="Help request not found")
    return help_request.to_dict()

"""Chat platform boundary: inbound message provenance and outbound moderation actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)


class EnforcementActionError(RuntimeError):
    """Base error for chat actions that could not be carried out."""

    reason: str = "action_failed"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.reason)
        self.detail = detail or self.reason


class MessageNotFound(EnforcementActionError):
    reason = "message_not_found"


class DirectMessagesClosed(EnforcementActionError):
    reason = "direct_messages_closed"


class MissingPermissions(EnforcementActionError):
    reason = "missing_permissions"


@dataclass(frozen=True)
class ChatMessage:
    tenant_id: str
    channel_id: str
    message_id: str
    user_id: str
    content: str
    author_is_bot: bool = False

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "ChatMessage":
        flag = data.get("author_is_bot", False)
        if isinstance(flag, str):
            flag = flag.strip().lower() in {"1", "true", "yes"}
        return ChatMessage(
            tenant_id=str(data["tenant_id"]),
            channel_id=str(data["channel_id"]),
            message_id=str(data["message_id"]),
            user_id=str(data["user_id"]),
            content=str(data.get("content") or ""),
            author_is_bot=bool(flag),
        )


class ChatGateway(Protocol):
    """Outbound actions against the chat platform; failures raise EnforcementActionError."""

    async def post_warning(self, message: ChatMessage, notice: Mapping[str, Any], *, delete_after_ms: int) -> None:
        ...

    async def delete_message(self, message: ChatMessage) -> None:
        ...

    async def notify_author(self, message: ChatMessage, notice: Mapping[str, Any]) -> None:
        ...

    async def post_log(self, tenant_id: str, log_channel_id: str, notice: Mapping[str, Any]) -> None:
        ...

    async def post_channel_message(self, tenant_id: str, channel_id: str, content: str) -> None:
        ...


class LoggingGateway(ChatGateway):
    """Gateway that only records intended actions; used when no chat transport is wired."""

    async def post_warning(self, message: ChatMessage, notice: Mapping[str, Any], *, delete_after_ms: int) -> None:
        logger.info("gateway warning", extra={"channel_id": message.channel_id, "delete_after_ms": delete_after_ms})

    async def delete_message(self, message: ChatMessage) -> None:
        logger.info("gateway delete", extra={"channel_id": message.channel_id, "message_id": message.message_id})

    async def notify_author(self, message: ChatMessage, notice: Mapping[str, Any]) -> None:
        logger.info("gateway dm", extra={"user_id": message.user_id})

    async def post_log(self, tenant_id: str, log_channel_id: str, notice: Mapping[str, Any]) -> None:
        logger.info("gateway log notice", extra={"tenant_id": tenant_id, "log_channel_id": log_channel_id})

    async def post_channel_message(self, tenant_id: str, channel_id: str, content: str) -> None:
        logger.info("gateway channel message", extra={"tenant_id": tenant_id, "channel_id": channel_id})

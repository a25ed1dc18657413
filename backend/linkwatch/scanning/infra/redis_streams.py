"""Redis stream adapters: the outbound actions gateway and the ingress publisher."""

from __future__ import annotations

import json
from typing import Any, Mapping

from redis.exceptions import RedisError

from linkwatch.infra.redis import RedisProxy, redis_client
from linkwatch.scanning.domain.gateway import ChatGateway, ChatMessage, EnforcementActionError

ACTIONS_MAXLEN = 10000
INGRESS_MAXLEN = 10000


class RedisStreamGateway(ChatGateway):
    """Publishes moderation actions for the chat-platform bot to execute."""

    def __init__(self, redis: RedisProxy | None = None, *, stream: str = "links:actions", maxlen: int = ACTIONS_MAXLEN) -> None:
        self.redis = redis or redis_client
        self.stream = stream
        self.maxlen = maxlen

    async def post_warning(self, message: ChatMessage, notice: Mapping[str, Any], *, delete_after_ms: int) -> None:
        await self._publish(
            "post_warning",
            tenant_id=message.tenant_id,
            channel_id=message.channel_id,
            message_id=message.message_id,
            user_id=message.user_id,
            payload={**notice, "delete_after_ms": delete_after_ms},
        )

    async def delete_message(self, message: ChatMessage) -> None:
        await self._publish(
            "delete_message",
            tenant_id=message.tenant_id,
            channel_id=message.channel_id,
            message_id=message.message_id,
            user_id=message.user_id,
        )

    async def notify_author(self, message: ChatMessage, notice: Mapping[str, Any]) -> None:
        await self._publish(
            "notify_author",
            tenant_id=message.tenant_id,
            channel_id=message.channel_id,
            message_id=message.message_id,
            user_id=message.user_id,
            payload=notice,
        )

    async def post_log(self, tenant_id: str, log_channel_id: str, notice: Mapping[str, Any]) -> None:
        await self._publish("post_log", tenant_id=tenant_id, channel_id=log_channel_id, payload=notice)

    async def post_channel_message(self, tenant_id: str, channel_id: str, content: str) -> None:
        await self._publish("post_message", tenant_id=tenant_id, channel_id=channel_id, payload={"content": content})

    async def _publish(
        self,
        action: str,
        *,
        tenant_id: str,
        channel_id: str,
        message_id: str = "",
        user_id: str = "",
        payload: Mapping[str, Any] | None = None,
    ) -> str:
        fields = {
            "action": action,
            "tenant_id": tenant_id,
            "channel_id": channel_id,
            "message_id": message_id,
            "user_id": user_id,
            "payload": json.dumps(dict(payload or {}), default=str),
        }
        try:
            return await self.redis.xadd(self.stream, fields, maxlen=self.maxlen, approximate=True)
        except RedisError as exc:
            raise EnforcementActionError(f"{action}: {exc}") from exc


async def publish_message(message: ChatMessage, *, redis: RedisProxy | None = None, stream: str = "links:ingress") -> str:
    """Append a chat message to the ingress stream consumed by the scanner worker."""

    client = redis or redis_client
    fields = {
        "tenant_id": message.tenant_id,
        "channel_id": message.channel_id,
        "message_id": message.message_id,
        "user_id": message.user_id,
        "content": message.content,
        "author_is_bot": "1" if message.author_is_bot else "0",
    }
    return await client.xadd(stream, fields, maxlen=INGRESS_MAXLEN, approximate=True)

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from linkwatch.infra import postgres
from linkwatch.main import app
from linkwatch.scanning.domain import container
from linkwatch.scanning.domain.gateway import ChatMessage
from linkwatch.scanning.domain.heuristics import HeuristicPolicy
from linkwatch.settings import Settings, settings

ADMIN_TOKEN = "test-admin-token"


class RecordingGateway:
	"""Chat gateway stub that records every call and can be told to fail per action."""

	def __init__(self) -> None:
		self.calls: list[tuple[str, dict[str, Any]]] = []
		self.failures: dict[str, Exception] = {}

	def fail(self, action: str, error: Exception) -> None:
		self.failures[action] = error

	def actions(self) -> list[str]:
		return [name for name, _ in self.calls]

	def _record(self, action: str, **payload: Any) -> None:
		error = self.failures.get(action)
		if error is not None:
			raise error
		self.calls.append((action, payload))

	async def post_warning(self, message: ChatMessage, notice: Mapping[str, Any], *, delete_after_ms: int) -> None:
		self._record("post_warning", message=message, notice=dict(notice), delete_after_ms=delete_after_ms)

	async def delete_message(self, message: ChatMessage) -> None:
		self._record("delete_message", message=message)

	async def notify_author(self, message: ChatMessage, notice: Mapping[str, Any]) -> None:
		self._record("notify_author", message=message, notice=dict(notice))

	async def post_log(self, tenant_id: str, log_channel_id: str, notice: Mapping[str, Any]) -> None:
		self._record("post_log", tenant_id=tenant_id, log_channel_id=log_channel_id, notice=dict(notice))

	async def post_channel_message(self, tenant_id: str, channel_id: str, content: str) -> None:
		self._record("post_channel_message", tenant_id=tenant_id, channel_id=channel_id, content=content)


def make_message(content: str, *, tenant_id: str = "guild-1", user_id: str = "user-1", message_id: str = "msg-1", author_is_bot: bool = False) -> ChatMessage:
	return ChatMessage(
		tenant_id=tenant_id,
		channel_id="chan-1",
		message_id=message_id,
		user_id=user_id,
		content=content,
		author_is_bot=author_is_bot,
	)


def created_days_ago(days: int) -> dict[str, datetime]:
	return {"creation_date": datetime.now(timezone.utc) - timedelta(days=days)}


def ok_handler(request: httpx.Request) -> httpx.Response:
	return httpx.Response(200)


def scanner_settings(**overrides: Any) -> Settings:
	values: dict[str, Any] = {
		"safe_browsing_api_key": None,
		"storage_backend": "memory",
		"policy_path": None,
	}
	values.update(overrides)
	return Settings(**values)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from linkwatch.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture
def gateway() -> RecordingGateway:
	return RecordingGateway()


@pytest_asyncio.fixture
async def make_state(gateway):
	"""Build an in-memory scanner state wired to a mock HTTP transport and a stub WHOIS table."""

	created: list[container.ScannerState] = []

	def _make(
		*,
		handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
		whois_records: Optional[Mapping[str, Any]] = None,
		config: Optional[Settings] = None,
		**kwargs: Any,
	) -> container.ScannerState:
		records = dict(whois_records or {})
		http = httpx.AsyncClient(transport=httpx.MockTransport(handler or ok_handler))
		state = container.build_state(
			config=config or scanner_settings(),
			http=http,
			gateway=kwargs.pop("gateway", gateway),
			policy=kwargs.pop("policy", HeuristicPolicy.default()),
			whois_lookup=lambda domain: records.get(domain),
			**kwargs,
		)
		created.append(state)
		return state

	try:
		yield _make
	finally:
		for state in created:
			await state.http.aclose()
		container.set_state(None)


@pytest.fixture
def admin_token(monkeypatch) -> str:
	monkeypatch.setattr(settings, "obs_admin_token", ADMIN_TOKEN)
	return ADMIN_TOKEN


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client

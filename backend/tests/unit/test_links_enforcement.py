import pytest

from conftest import RecordingGateway, make_message
from linkwatch.scanning.domain.enforcement import EnforcementDispatcher
from linkwatch.scanning.domain.gateway import DirectMessagesClosed, MessageNotFound, MissingPermissions
from linkwatch.scanning.domain.review import InMemoryReviewRepository, ReviewQueue
from linkwatch.scanning.domain.signals import Signal, Tier
from linkwatch.scanning.domain.verdicts import Verdict

VERDICT = Verdict(
    original_url="https://evil.example.com/login",
    resolved_url="https://evil.example.com/login",
    original_domain="evil.example.com",
    resolved_domain="evil.example.com",
    signals=(Signal.BLOCKLIST_HIT,),
    is_blocklisted=True,
)


def _dispatcher(gateway: RecordingGateway) -> tuple[EnforcementDispatcher, InMemoryReviewRepository]:
    repository = InMemoryReviewRepository()
    dispatcher = EnforcementDispatcher(gateway, ReviewQueue(repository, gateway), warn_message_ttl_ms=1234)
    return dispatcher, repository


@pytest.mark.asyncio
async def test_safe_only_posts_log_when_configured() -> None:
    gateway = RecordingGateway()
    dispatcher, _ = _dispatcher(gateway)

    quiet = await dispatcher.dispatch(Tier.SAFE, VERDICT, make_message("x"))
    logged = await dispatcher.dispatch(Tier.SAFE, VERDICT, make_message("x"), log_channel_id="log-1")

    assert quiet.outcome == "allowed"
    assert logged.outcome == "logged"
    assert gateway.actions() == ["post_log"]


@pytest.mark.asyncio
async def test_warn_posts_expiring_notice() -> None:
    gateway = RecordingGateway()
    dispatcher, _ = _dispatcher(gateway)

    result = await dispatcher.dispatch(Tier.WARN, VERDICT, make_message("x"))

    assert result.outcome == "warned"
    name, payload = gateway.calls[0]
    assert name == "post_warning"
    assert payload["delete_after_ms"] == 1234
    assert payload["notice"]["tier"] == "WARN"


@pytest.mark.asyncio
async def test_warn_failure_is_an_outcome_not_an_exception() -> None:
    gateway = RecordingGateway()
    gateway.fail("post_warning", MissingPermissions())
    dispatcher, _ = _dispatcher(gateway)

    result = await dispatcher.dispatch(Tier.WARN, VERDICT, make_message("x"))

    assert result.outcome == "warn_failed"
    assert not result.succeeded


@pytest.mark.asyncio
async def test_quarantine_removes_and_enqueues_review() -> None:
    gateway = RecordingGateway()
    dispatcher, repository = _dispatcher(gateway)

    result = await dispatcher.dispatch(Tier.QUARANTINE, VERDICT, make_message("x"), log_channel_id="log-1")

    assert result.outcome == "quarantined"
    assert result.message_removed
    assert result.review_id is not None
    entry = await repository.get(result.review_id)
    assert entry is not None and entry.is_pending
    assert gateway.actions() == ["delete_message", "post_log"]
    assert gateway.calls[1][1]["notice"]["review_id"] == result.review_id


@pytest.mark.asyncio
async def test_quarantine_without_delete_permission_still_queues() -> None:
    gateway = RecordingGateway()
    gateway.fail("delete_message", MissingPermissions())
    dispatcher, repository = _dispatcher(gateway)

    result = await dispatcher.dispatch(Tier.QUARANTINE, VERDICT, make_message("x"))

    assert result.outcome == "quarantine_failed"
    assert not result.message_removed
    assert await repository.count_pending() == 1


@pytest.mark.asyncio
async def test_delete_removes_and_notifies_author() -> None:
    gateway = RecordingGateway()
    dispatcher, repository = _dispatcher(gateway)

    result = await dispatcher.dispatch(Tier.DELETE, VERDICT, make_message("x"))

    assert result.outcome == "deleted"
    assert result.message_removed and result.author_notified
    assert gateway.actions() == ["delete_message", "notify_author"]
    assert await repository.count_pending() == 0


@pytest.mark.asyncio
async def test_delete_with_closed_dms_and_vanished_message() -> None:
    gateway = RecordingGateway()
    gateway.fail("delete_message", MessageNotFound())
    gateway.fail("notify_author", DirectMessagesClosed())
    dispatcher, _ = _dispatcher(gateway)

    result = await dispatcher.dispatch(Tier.DELETE, VERDICT, make_message("x"))

    assert result.outcome == "deleted"
    assert result.message_removed
    assert not result.author_notified


@pytest.mark.asyncio
async def test_delete_failure_reports_delete_failed() -> None:
    gateway = RecordingGateway()
    gateway.fail("delete_message", MissingPermissions("cannot manage messages"))
    dispatcher, _ = _dispatcher(gateway)

    result = await dispatcher.dispatch(Tier.DELETE, VERDICT, make_message("x"))

    assert result.outcome == "delete_failed"
    assert result.author_notified


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("tier", "action", "expected"),
    [
        (Tier.DELETE, "delete_message", "delete_failed"),
        (Tier.QUARANTINE, "delete_message", "quarantine_failed"),
        (Tier.WARN, "post_warning", "warn_failed"),
    ],
)
async def test_unexpected_gateway_errors_become_outcomes(tier, action, expected) -> None:
    gateway = RecordingGateway()
    gateway.fail(action, RuntimeError("client library bug"))
    gateway.fail("notify_author", ValueError("bad payload"))
    dispatcher, _ = _dispatcher(gateway)

    result = await dispatcher.dispatch(tier, VERDICT, make_message("x"), log_channel_id="log-1")

    assert result.outcome == expected
    assert not result.message_removed
    assert not result.author_notified

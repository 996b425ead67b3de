"""Tests for the publish dispatcher sweep."""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update

from content_engine.errors import PermanentProviderError, TransientProviderError
from content_engine.models.scheduled_post import DeliveryStatus, PostDelivery, PostStatus
from content_engine.models.social_account import AuthStatus, SocialAccount
from content_engine.services.scheduling_service import SchedulingService
from content_engine.utils.clock import utcnow

from fakes import (
    COMPANY,
    FakePublisher,
    connect_account,
    permanent_failure,
    transient_failure,
)


async def _post(db, platforms, minutes=5):
    for platform in platforms:
        await connect_account(db, platform)
    when = utcnow() + timedelta(minutes=minutes)
    post = await SchedulingService(db).create_scheduled_post(
        COMPANY, platforms, scheduled_for=when, content="New episode is out", can_publish=True
    )
    return post, when


async def _load(session_factory, post_id):
    async with session_factory() as session:
        return await SchedulingService(session).require_post(post_id)


def _by_platform(post):
    return {d.platform: d for d in post.deliveries}


@pytest.mark.asyncio
async def test_nothing_is_due_before_scheduled_time(db, make_dispatcher):
    post, when = await _post(db, ["twitter"])
    publisher = FakePublisher("twitter")

    report = await make_dispatcher({"twitter": publisher}).sweep(now=when - timedelta(seconds=1))

    assert report.claimed == 0
    assert publisher.calls == []


@pytest.mark.asyncio
async def test_transient_failure_on_one_platform_is_retried(db, session_factory, make_dispatcher, test_settings):
    post, when = await _post(db, ["twitter", "linkedin"])
    twitter = FakePublisher("twitter")
    linkedin = FakePublisher("linkedin", results=[transient_failure("linkedin")])
    dispatcher = make_dispatcher({"twitter": twitter, "linkedin": linkedin})

    report = await dispatcher.sweep(now=when)

    assert (report.published, report.retrying) == (1, 1)
    post = await _load(session_factory, post.id)
    deliveries = _by_platform(post)
    assert post.status == PostStatus.SCHEDULED
    assert deliveries["twitter"].status == DeliveryStatus.PUBLISHED
    assert deliveries["linkedin"].status == DeliveryStatus.SCHEDULED
    assert deliveries["linkedin"].retry_count == 1
    assert deliveries["linkedin"].next_attempt_at == when + timedelta(
        seconds=test_settings.publish_retry_backoff_seconds
    )

    # Not due again until the backoff passes
    early = await dispatcher.sweep(now=when + timedelta(seconds=1))
    assert early.claimed == 0

    later = await dispatcher.sweep(now=deliveries["linkedin"].next_attempt_at)
    assert later.published == 1
    assert len(twitter.calls) == 1
    assert len(linkedin.calls) == 2

    post = await _load(session_factory, post.id)
    assert post.status == PostStatus.PUBLISHED
    assert post.posted_at is not None
    assert post.retry_count == 1


@pytest.mark.asyncio
async def test_exhausted_retries_fail_then_manual_retry_rearms(db, session_factory, make_dispatcher, test_settings):
    post, when = await _post(db, ["twitter"])
    attempts = test_settings.publish_max_retries + 1
    publisher = FakePublisher("twitter", results=[transient_failure("twitter") for _ in range(attempts)])
    dispatcher = make_dispatcher({"twitter": publisher})

    now = when
    for _ in range(attempts):
        await dispatcher.sweep(now=now)
        now += timedelta(days=1)

    post = await _load(session_factory, post.id)
    delivery = post.deliveries[0]
    assert len(publisher.calls) == attempts
    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.retry_count == attempts
    assert post.status == PostStatus.FAILED
    assert "503" in post.error_message

    # Failed posts stay failed until retried explicitly
    assert (await dispatcher.sweep(now=now)).claimed == 0

    async with session_factory() as session:
        rearmed = await SchedulingService(session).retry_scheduled_post(post.id, COMPANY)
    assert rearmed.status == PostStatus.SCHEDULED
    assert rearmed.deliveries[0].retry_count == 0

    report = await dispatcher.sweep(now=now)
    assert report.published == 1
    assert (await _load(session_factory, post.id)).status == PostStatus.PUBLISHED


@pytest.mark.asyncio
async def test_permanent_failure_fails_immediately(db, session_factory, make_dispatcher):
    post, when = await _post(db, ["twitter"])
    publisher = FakePublisher("twitter", results=[permanent_failure("twitter")])

    report = await make_dispatcher({"twitter": publisher}).sweep(now=when)

    assert report.failed == 1
    post = await _load(session_factory, post.id)
    assert post.status == PostStatus.FAILED
    assert post.deliveries[0].retry_count == 0
    assert "invalid token" in post.deliveries[0].error_message


@pytest.mark.asyncio
async def test_concurrent_sweeps_publish_once(db, session_factory, make_dispatcher):
    post, when = await _post(db, ["twitter"])
    publisher = FakePublisher("twitter", delay=0.05)
    first = make_dispatcher({"twitter": publisher})
    second = make_dispatcher({"twitter": publisher})

    reports = await asyncio.gather(first.sweep(now=when), second.sweep(now=when))

    assert sum(r.claimed for r in reports) == 1
    assert len(publisher.calls) == 1
    assert (await _load(session_factory, post.id)).status == PostStatus.PUBLISHED


@pytest.mark.asyncio
async def test_stale_claim_is_reclaimed(db, session_factory, make_dispatcher, test_settings):
    post, when = await _post(db, ["twitter"])
    abandoned_at = when - timedelta(seconds=test_settings.dispatch_claim_timeout_seconds + 60)
    await db.execute(
        update(PostDelivery)
        .where(PostDelivery.post_id == post.id)
        .values(status=DeliveryStatus.PUBLISHING, claim_token="crashed-worker", claimed_at=abandoned_at)
    )
    await db.commit()
    publisher = FakePublisher("twitter")

    report = await make_dispatcher({"twitter": publisher}).sweep(now=when)

    assert report.published == 1
    assert (await _load(session_factory, post.id)).status == PostStatus.PUBLISHED
    assert (await _load(session_factory, post.id)).deliveries[0].retry_count == 1


@pytest.mark.asyncio
async def test_fresh_claim_is_left_alone(db, make_dispatcher):
    post, when = await _post(db, ["twitter"])
    await db.execute(
        update(PostDelivery)
        .where(PostDelivery.post_id == post.id)
        .values(status=DeliveryStatus.PUBLISHING, claim_token="other-worker", claimed_at=when)
    )
    await db.commit()

    report = await make_dispatcher({"twitter": FakePublisher("twitter")}).sweep(now=when)

    assert report.claimed == 0


@pytest.mark.asyncio
async def test_missing_adapter_fails_delivery(db, session_factory, make_dispatcher):
    post, when = await _post(db, ["facebook"])

    report = await make_dispatcher({}).sweep(now=when)

    assert report.failed == 1
    delivery = (await _load(session_factory, post.id)).deliveries[0]
    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.error_message == "No publish adapter configured"


@pytest.mark.asyncio
async def test_disconnected_account_fails_delivery(db, session_factory, make_dispatcher):
    post, when = await _post(db, ["twitter"])
    async with session_factory() as session:
        await session.execute(update(SocialAccount).values(auth_status=AuthStatus.EXPIRED))
        await session.commit()

    report = await make_dispatcher({"twitter": FakePublisher("twitter")}).sweep(now=when)

    assert report.failed == 1
    assert (await _load(session_factory, post.id)).deliveries[0].error_message == "No connected account"


@pytest.mark.asyncio
async def test_publish_timeout_is_retryable(db, session_factory, make_dispatcher):
    post, when = await _post(db, ["twitter"])
    publisher = FakePublisher("twitter", delay=1.0)

    report = await make_dispatcher({"twitter": publisher}, publish_timeout_seconds=0.05).sweep(now=when)

    assert report.retrying == 1
    delivery = (await _load(session_factory, post.id)).deliveries[0]
    assert delivery.status == DeliveryStatus.SCHEDULED
    assert delivery.error_message == "Publish timed out"


@pytest.mark.asyncio
async def test_platform_text_override_is_sent(db, make_dispatcher):
    await connect_account(db, "twitter")
    await connect_account(db, "linkedin")
    when = utcnow() + timedelta(minutes=5)
    await SchedulingService(db).create_scheduled_post(
        COMPANY, ["twitter", "linkedin"], scheduled_for=when, content="Short take",
        content_overrides={"linkedin": "A longer professional write-up"}, can_publish=True,
    )
    twitter, linkedin = FakePublisher("twitter"), FakePublisher("linkedin")

    await make_dispatcher({"twitter": twitter, "linkedin": linkedin}).sweep(now=when)

    assert twitter.calls[0]["text"] == "Short take"
    assert linkedin.calls[0]["text"] == "A longer professional write-up"


@pytest.mark.asyncio
async def test_raising_adapter_is_retried_then_fails(db, session_factory, make_dispatcher, test_settings):
    post, when = await _post(db, ["twitter"])
    attempts = test_settings.publish_max_retries + 1
    publisher = FakePublisher(
        "twitter", results=[TransientProviderError("rate limited", 429) for _ in range(attempts)]
    )
    dispatcher = make_dispatcher({"twitter": publisher})

    now = when
    for _ in range(attempts + 2):
        await dispatcher.sweep(now=now)
        now += timedelta(days=1)

    post = await _load(session_factory, post.id)
    delivery = post.deliveries[0]
    assert len(publisher.calls) == attempts
    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.retry_count == attempts
    assert delivery.claim_token is None
    assert post.status == PostStatus.FAILED
    assert "rate limited" in delivery.error_message


@pytest.mark.asyncio
async def test_raising_adapter_permanent_error_fails_immediately(db, session_factory, make_dispatcher):
    post, when = await _post(db, ["twitter"])
    publisher = FakePublisher("twitter", results=[PermanentProviderError("token revoked", 401)])

    report = await make_dispatcher({"twitter": publisher}).sweep(now=when)

    assert report.failed == 1
    delivery = (await _load(session_factory, post.id)).deliveries[0]
    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.retry_count == 0
    assert delivery.error_message == "token revoked"


@pytest.mark.asyncio
async def test_unexpected_adapter_error_is_retryable(db, session_factory, make_dispatcher):
    post, when = await _post(db, ["twitter"])
    publisher = FakePublisher("twitter", results=[RuntimeError("socket closed")])

    report = await make_dispatcher({"twitter": publisher}).sweep(now=when)

    assert report.retrying == 1
    delivery = (await _load(session_factory, post.id)).deliveries[0]
    assert delivery.status == DeliveryStatus.SCHEDULED
    assert delivery.retry_count == 1
    assert delivery.error_message == "RuntimeError: socket closed"


@pytest.mark.asyncio
async def test_repeatedly_abandoned_claim_fails_without_publishing(db, session_factory, make_dispatcher, test_settings):
    post, when = await _post(db, ["twitter"])
    abandoned_at = when - timedelta(seconds=test_settings.dispatch_claim_timeout_seconds + 60)
    await db.execute(
        update(PostDelivery)
        .where(PostDelivery.post_id == post.id)
        .values(
            status=DeliveryStatus.PUBLISHING,
            claim_token="crashed-worker",
            claimed_at=abandoned_at,
            retry_count=test_settings.publish_max_retries,
        )
    )
    await db.commit()
    publisher = FakePublisher("twitter")

    report = await make_dispatcher({"twitter": publisher}).sweep(now=when)

    assert report.failed == 1
    assert publisher.calls == []
    post = await _load(session_factory, post.id)
    assert post.status == PostStatus.FAILED
    assert post.deliveries[0].retry_count == test_settings.publish_max_retries + 1


@pytest.mark.asyncio
async def test_retrying_failed_post_makes_it_due_again(db, session_factory, make_dispatcher):
    post, when = await _post(db, ["twitter", "linkedin"])
    twitter = FakePublisher("twitter")
    linkedin = FakePublisher("linkedin", results=[permanent_failure("linkedin")])
    dispatcher = make_dispatcher({"twitter": twitter, "linkedin": linkedin})
    await dispatcher.sweep(now=when)
    assert (await _load(session_factory, post.id)).status == PostStatus.FAILED

    async with session_factory() as session:
        service = SchedulingService(session)
        # Load the deliveries into this session before the retry rewrites them
        await service.require_post(post.id, COMPANY)
        rearmed = await service.retry_scheduled_post(post.id, COMPANY)

    assert rearmed.status == PostStatus.SCHEDULED
    assert rearmed.error_message is None
    report = await dispatcher.sweep(now=when + timedelta(days=1))
    assert report.claimed == 1
    post = await _load(session_factory, post.id)
    assert post.status == PostStatus.PUBLISHED
    assert len(twitter.calls) == 1

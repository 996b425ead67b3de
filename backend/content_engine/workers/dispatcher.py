"""Publish dispatcher: delivers due scheduled posts to their platforms."""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, case, or_, select, update

from content_engine.adapters.base import PublishContent, PublishResult
from content_engine.adapters.http_errors import sanitize
from content_engine.adapters.publish import PublishAdapterRegistry
from content_engine.adapters.base import ClipRenderer, MediaStore
from content_engine.errors import (
    ConcurrencyConflict,
    NotFoundError,
    ProviderError,
    TransientProviderError,
    ValidationError,
)
from content_engine.models.clip import Clip
from content_engine.models.scheduled_post import (
    ApprovalStatus,
    DeliveryStatus,
    PostDelivery,
    PostStatus,
    ScheduledPost,
)
from content_engine.models.social_account import AuthStatus, Platform, SocialAccount
from content_engine.services.export_service import ClipExportService
from content_engine.services.scheduling_service import recompute_post_status
from content_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Counts from one dispatch sweep."""
    claimed: int = 0
    published: int = 0
    retrying: int = 0
    failed: int = 0
    lost: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "claimed": self.claimed,
            "published": self.published,
            "retrying": self.retrying,
            "failed": self.failed,
            "lost": list(self.lost),
        }


class PublishDispatcher:
    """
    Time-driven sweep over due deliveries.

    A delivery is claimed with a conditional update that stamps a fresh claim
    token, so concurrent sweeps never publish the same delivery twice. Every
    result write is conditional on that token.

    Clip posts without explicit media publish the clip's rendered export,
    which is rendered on first use.
    """

    def __init__(
        self,
        session_factory,
        registry: PublishAdapterRegistry,
        settings,
        renderer: Optional[ClipRenderer] = None,
        media_store: Optional[MediaStore] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.settings = settings
        self.renderer = renderer
        self.media_store = media_store

    def _due_clause(self, now: datetime):
        stale_before = now - timedelta(seconds=self.settings.dispatch_claim_timeout_seconds)
        ready_posts = select(ScheduledPost.id).where(
            ScheduledPost.status == PostStatus.SCHEDULED,
            ScheduledPost.approval_status == ApprovalStatus.APPROVED,
            ScheduledPost.scheduled_for <= now,
        )
        return and_(
            PostDelivery.post_id.in_(ready_posts),
            or_(
                and_(
                    PostDelivery.status == DeliveryStatus.SCHEDULED,
                    or_(PostDelivery.next_attempt_at.is_(None), PostDelivery.next_attempt_at <= now),
                ),
                and_(
                    PostDelivery.status == DeliveryStatus.PUBLISHING,
                    PostDelivery.claimed_at < stale_before,
                ),
            ),
        )

    async def due_deliveries(self, now: Optional[datetime] = None) -> List[int]:
        now = now or utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(PostDelivery.id)
                .join(ScheduledPost, ScheduledPost.id == PostDelivery.post_id)
                .where(self._due_clause(now))
                .order_by(ScheduledPost.scheduled_for, PostDelivery.id)
                .limit(self.settings.dispatch_batch_size)
            )
            return list(result.scalars().all())

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Claim and publish every due delivery."""
        now = now or utcnow()
        report = SweepReport()

        for delivery_id in await self.due_deliveries(now):
            token = await self._claim(delivery_id, now)
            if token is None:
                continue
            report.claimed += 1
            try:
                outcome = await self._deliver(delivery_id, token, now)
            except Exception as e:
                # Claim stays in place and is picked up again once stale
                logger.exception(f"Delivery {delivery_id}: dispatch crashed: {e}")
                continue

            if outcome is None:
                report.lost.append(delivery_id)
            elif outcome == DeliveryStatus.PUBLISHED:
                report.published += 1
            elif outcome == DeliveryStatus.SCHEDULED:
                report.retrying += 1
            else:
                report.failed += 1

        if report.claimed:
            logger.info(f"Dispatch sweep: {report.to_dict()}")
        return report

    async def _claim(self, delivery_id: int, now: datetime) -> Optional[str]:
        token = uuid.uuid4().hex
        async with self.session_factory() as session:
            result = await session.execute(
                update(PostDelivery)
                .where(PostDelivery.id == delivery_id, self._due_clause(now))
                .values(
                    status=DeliveryStatus.PUBLISHING,
                    # Reclaiming an abandoned claim spends an attempt
                    retry_count=case(
                        (PostDelivery.status == DeliveryStatus.PUBLISHING, PostDelivery.retry_count + 1),
                        else_=PostDelivery.retry_count,
                    ),
                    claim_token=token,
                    claimed_at=now,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount != 1:
            logger.debug(f"Delivery {delivery_id}: claimed by another sweep")
            return None
        return token

    async def _deliver(self, delivery_id: int, token: str, now: datetime) -> Optional[DeliveryStatus]:
        async with self.session_factory() as session:
            delivery = await session.get(PostDelivery, delivery_id)
            if delivery is None or delivery.claim_token != token:
                return None
            post = await session.get(ScheduledPost, delivery.post_id)
            platform = delivery.platform
            retry_count = delivery.retry_count

            clip = await session.get(Clip, post.clip_id) if post.clip_id else None
            content = PublishContent(
                text=post.content_for(platform),
                title=clip.ai_title if clip else None,
                clip_id=post.clip_id,
                aspect_ratio=clip.aspect_ratio if clip else None,
                start_time=clip.start_time if clip else None,
                end_time=clip.end_time if clip else None,
            )
            media_ref = (post.media_paths or [None])[0]
            render_clip_id = clip.id if clip is not None and not post.media_paths else None

            account = (await session.execute(
                select(SocialAccount)
                .where(
                    SocialAccount.company_id == post.company_id,
                    SocialAccount.platform == Platform(platform),
                    SocialAccount.auth_status == AuthStatus.CONNECTED,
                )
                .order_by(SocialAccount.id)
                .limit(1)
            )).scalar_one_or_none()

        adapter = self.registry.get(platform)
        if retry_count > self.settings.publish_max_retries:
            result = PublishResult(
                success=False, platform=platform, error="Abandoned after repeated interrupted attempts"
            )
        elif account is None:
            result = PublishResult(success=False, platform=platform, error="No connected account")
        elif adapter is None:
            result = PublishResult(success=False, platform=platform, error="No publish adapter configured")
        else:
            result = None
            if render_clip_id is not None:
                media_ref, result = await self._clip_media(render_clip_id, platform)
            if result is None:
                result = await self._publish(adapter, platform, account, content, media_ref)

        return await self._record(delivery_id, token, retry_count, result, now)

    async def _clip_media(self, clip_id: int, platform: str) -> Tuple[Optional[str], Optional[PublishResult]]:
        """The clip's current export, rendering it first when missing or stale."""
        if self.renderer is None or self.media_store is None:
            return None, PublishResult(success=False, platform=platform, error="No clip renderer configured")
        try:
            async with self.session_factory() as session:
                clip = await ClipExportService(session, self.renderer, self.media_store).export_clip(clip_id)
                return clip.export_media_ref, None
        except (TransientProviderError, ConcurrencyConflict) as e:
            return None, PublishResult(
                success=False, platform=platform, error=f"Clip render failed: {e}", retryable=True
            )
        except (ProviderError, NotFoundError, ValidationError) as e:
            return None, PublishResult(success=False, platform=platform, error=f"Clip render failed: {e}")

    async def _publish(self, adapter, platform, account, content, media_ref) -> PublishResult:
        try:
            return await asyncio.wait_for(
                adapter.publish(platform, account, content, media_ref),
                timeout=self.settings.publish_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{platform}] publish exceeded {self.settings.publish_timeout_seconds}s")
            return PublishResult(
                success=False, platform=platform, error="Publish timed out", retryable=True
            )
        except TransientProviderError as e:
            return PublishResult(success=False, platform=platform, error=str(e), retryable=True)
        except ProviderError as e:
            return PublishResult(success=False, platform=platform, error=str(e), retryable=False)
        except Exception as e:
            logger.exception(f"[{platform}] publish adapter raised: {e}")
            return PublishResult(
                success=False, platform=platform, error=f"{type(e).__name__}: {e}", retryable=True
            )

    async def _record(
        self,
        delivery_id: int,
        token: str,
        retry_count: int,
        result: PublishResult,
        now: datetime,
    ) -> Optional[DeliveryStatus]:
        """Write the outcome if the claim is still ours, then refresh the post aggregate."""
        if result.success:
            status = DeliveryStatus.PUBLISHED
            values = {
                "external_post_id": result.external_post_id,
                "posted_at": now,
                "error_message": None,
            }
        else:
            error = sanitize(result.error or "Unknown error")
            attempts = retry_count + 1 if result.retryable else retry_count
            if result.retryable and attempts <= self.settings.publish_max_retries:
                status = DeliveryStatus.SCHEDULED
                delay = self.settings.publish_retry_backoff_seconds * (2 ** retry_count)
                values = {"next_attempt_at": now + timedelta(seconds=delay)}
            else:
                status = DeliveryStatus.FAILED
                values = {}
            values.update({"retry_count": attempts, "error_message": error})

        async with self.session_factory() as session:
            update_result = await session.execute(
                update(PostDelivery)
                .where(PostDelivery.id == delivery_id, PostDelivery.claim_token == token)
                .values(status=status, claim_token=None, claimed_at=None, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount != 1:
                await session.rollback()
                logger.warning(f"Delivery {delivery_id}: claim lost before recording {status.value}")
                return None

            post_id = (await session.execute(
                select(PostDelivery.post_id).where(PostDelivery.id == delivery_id)
            )).scalar_one()
            await recompute_post_status(session, post_id)
            await session.commit()

        if status == DeliveryStatus.PUBLISHED:
            logger.info(f"Delivery {delivery_id}: published as {result.external_post_id}")
        elif status == DeliveryStatus.SCHEDULED:
            logger.warning(f"Delivery {delivery_id}: transient failure, retry scheduled ({result.error})")
        else:
            logger.error(f"Delivery {delivery_id}: failed ({result.error})")
        return status

"""Scheduling service: turns approved clips into scheduled posts."""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from content_engine.errors import (
    ConcurrencyConflict,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from content_engine.models.clip import PRESERVED_CLIP_STATUSES
from content_engine.models.scheduled_post import (
    ApprovalStatus,
    DeliveryStatus,
    PostDelivery,
    PostStatus,
    ScheduledPost,
)
from content_engine.models.social_account import PLATFORM_SPECS, AuthStatus, Platform, SocialAccount
from content_engine.services.clip_service import ClipService
from content_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)

APPROVAL_DECISIONS = {
    "approved": ApprovalStatus.APPROVED,
    "approve": ApprovalStatus.APPROVED,
    "rejected": ApprovalStatus.REJECTED,
    "reject": ApprovalStatus.REJECTED,
}


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _delivery_started(delivery: PostDelivery) -> bool:
    return delivery.status != DeliveryStatus.SCHEDULED or delivery.retry_count > 0


def _parse_platforms(platforms: Iterable[str]) -> List[str]:
    names = []
    for platform in platforms or []:
        value = str(getattr(platform, "value", platform)).strip().lower()
        try:
            Platform(value)
        except ValueError:
            raise ValidationError(f"Unsupported platform: {platform}")
        if value not in names:
            names.append(value)
    if not names:
        raise ValidationError("At least one platform is required")
    return names


async def recompute_post_status(db: AsyncSession, post_id: int) -> Optional[PostStatus]:
    """
    Derive a post's aggregate fields from its deliveries. Does not commit.

    published: every delivery published.
    failed: every delivery finished and at least one failed.
    scheduled: anything still pending or in flight.
    """
    # Columns, not entities: bulk updates earlier in the session leave loaded rows stale
    result = await db.execute(
        select(
            PostDelivery.platform,
            PostDelivery.status,
            PostDelivery.posted_at,
            PostDelivery.error_message,
            PostDelivery.retry_count,
        ).where(PostDelivery.post_id == post_id)
    )
    deliveries = result.all()
    if not deliveries:
        return None

    statuses = {d.status for d in deliveries}
    if statuses == {DeliveryStatus.PUBLISHED}:
        status = PostStatus.PUBLISHED
    elif statuses <= {DeliveryStatus.PUBLISHED, DeliveryStatus.FAILED}:
        status = PostStatus.FAILED
    else:
        status = PostStatus.SCHEDULED

    posted = [d.posted_at for d in deliveries if d.posted_at is not None]
    errors = [f"{d.platform}: {d.error_message}" for d in deliveries if d.error_message]

    await db.execute(
        update(ScheduledPost)
        .where(ScheduledPost.id == post_id)
        .values(
            status=status,
            posted_at=max(posted) if status == PostStatus.PUBLISHED and posted else None,
            error_message="; ".join(errors) or None,
            retry_count=max(d.retry_count for d in deliveries),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return status


class SchedulingService:
    """Service for scheduled post operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _connected_platforms(self, company_id: str, platforms: List[str]) -> set:
        result = await self.db.execute(
            select(SocialAccount.platform).where(
                SocialAccount.company_id == company_id,
                SocialAccount.platform.in_([Platform(p) for p in platforms]),
                SocialAccount.auth_status == AuthStatus.CONNECTED,
            )
        )
        return {row[0].value for row in result}

    async def create_scheduled_post(
        self,
        company_id: str,
        platforms: List[str],
        scheduled_for: Optional[datetime] = None,
        clip_id: Optional[int] = None,
        content: Optional[str] = None,
        content_overrides: Optional[Dict[str, str]] = None,
        media_refs: Optional[List[str]] = None,
        publish_now: bool = False,
        can_publish: bool = False,
        approval_status: Optional[ApprovalStatus] = None,
    ) -> ScheduledPost:
        """
        Create a scheduled post for an approved clip or ad-hoc content.

        Args:
            company_id: Owning company
            platforms: Target platforms, each needing a connected account
            scheduled_for: Publication time; required unless publish_now
            clip_id: Approved (or already scheduled) clip to publish
            content: Post text; defaults to the clip's description or title
            content_overrides: Per-platform text
            media_refs: Media to attach; clip posts default to the clip's rendered export
            publish_now: Publish at the next dispatch sweep
            can_publish: Caller holds publishing rights
            approval_status: Requested approval; only publishers may pre-approve

        Raises:
            ValidationError: Any check fails (nothing is created)
            NotFoundError: Unknown clip
        """
        if not company_id:
            raise ValidationError("Company is required")
        platform_names = _parse_platforms(platforms)

        now = utcnow()
        if publish_now:
            when = now
        else:
            if scheduled_for is None:
                raise ValidationError("scheduled_for is required unless publishing now")
            when = _to_naive_utc(scheduled_for)
            if when < now:
                raise ValidationError("scheduled_for is in the past")

        if approval_status is not None:
            approval = ApprovalStatus(approval_status)
            if approval == ApprovalStatus.APPROVED and not can_publish:
                raise PermissionDeniedError("Publishing rights are required to pre-approve a post")
            if approval == ApprovalStatus.REJECTED:
                raise ValidationError("A new post cannot start rejected")
        else:
            approval = ApprovalStatus.APPROVED if can_publish else ApprovalStatus.PENDING

        overrides = {str(k).lower(): v for k, v in (content_overrides or {}).items() if v}
        stray = set(overrides) - set(platform_names)
        if stray:
            raise ValidationError(f"Overrides for platforms not targeted: {', '.join(sorted(stray))}")

        clip_service = ClipService(self.db)
        clip = None
        media = list(media_refs or [])
        if clip_id is not None:
            clip = await clip_service.require_clip(clip_id, company_id)
            await self.db.refresh(clip)
            if clip.status not in PRESERVED_CLIP_STATUSES:
                raise ValidationError(f"Clip {clip_id} is {clip.status.value}; only approved clips can be scheduled")
            for name in platform_names:
                max_duration = PLATFORM_SPECS[Platform(name)]["max_duration"]
                if clip.duration > max_duration:
                    raise ValidationError(
                        f"Clip is {clip.duration:.0f}s; {name} allows at most {max_duration}s"
                    )
            text = content or clip.ai_description or clip.ai_title or ""
        else:
            text = (content or "").strip()
            if not text and not overrides:
                raise ValidationError("Content is required for a post without a clip")

        for name in platform_names:
            spec = PLATFORM_SPECS[Platform(name)]
            if spec["requires_media"] and not media and clip is None:
                raise ValidationError(f"{name} requires media")
            body = overrides.get(name) or text
            if not body and not media and clip is None:
                raise ValidationError(f"Nothing to publish on {name}")
            if len(body) > spec["max_text_length"]:
                raise ValidationError(f"Text exceeds {spec['max_text_length']} characters for {name}")

        connected = await self._connected_platforms(company_id, platform_names)
        missing = [p for p in platform_names if p not in connected]
        if missing:
            raise ValidationError(f"No connected account for: {', '.join(missing)}")

        post = ScheduledPost(
            company_id=company_id,
            clip_id=clip.id if clip else None,
            platforms=platform_names,
            content=text,
            content_overrides=overrides,
            media_paths=media,
            scheduled_for=when,
            status=PostStatus.SCHEDULED,
            approval_status=approval,
        )
        try:
            self.db.add(post)
            await self.db.flush()
            self.db.add_all([
                PostDelivery(post_id=post.id, platform=name, next_attempt_at=when)
                for name in platform_names
            ])
            if clip is not None:
                await clip_service.mark_scheduled(clip, when)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Scheduled post {post.id} for {', '.join(platform_names)} at {when.isoformat()} "
            f"(approval={approval.value})"
        )
        return await self.get_post(post.id)

    async def get_post(self, post_id: int, company_id: Optional[str] = None) -> Optional[ScheduledPost]:
        """Get a post with its deliveries."""
        query = (
            select(ScheduledPost)
            .where(ScheduledPost.id == post_id)
            .options(selectinload(ScheduledPost.deliveries))
            .execution_options(populate_existing=True)
        )
        if company_id is not None:
            query = query.where(ScheduledPost.company_id == company_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def require_post(self, post_id: int, company_id: Optional[str] = None) -> ScheduledPost:
        post = await self.get_post(post_id, company_id)
        if not post:
            raise NotFoundError(f"Scheduled post {post_id} not found")
        return post

    async def list_scheduled_posts(
        self,
        company_id: str,
        status: Optional[PostStatus] = None,
        approval_status: Optional[ApprovalStatus] = None,
        clip_id: Optional[int] = None,
        platform: Optional[str] = None,
        upcoming: bool = False,
        limit: int = 100,
    ) -> List[ScheduledPost]:
        """List a company's posts, soonest first."""
        query = (
            select(ScheduledPost)
            .where(ScheduledPost.company_id == company_id)
            .options(selectinload(ScheduledPost.deliveries))
        )
        if status is not None:
            query = query.where(ScheduledPost.status == PostStatus(status))
        if approval_status is not None:
            query = query.where(ScheduledPost.approval_status == ApprovalStatus(approval_status))
        if clip_id is not None:
            query = query.where(ScheduledPost.clip_id == clip_id)
        if platform:
            query = query.where(ScheduledPost.id.in_(
                select(PostDelivery.post_id).where(PostDelivery.platform == platform.lower())
            ))
        if upcoming:
            query = query.where(
                ScheduledPost.status == PostStatus.SCHEDULED,
                ScheduledPost.scheduled_for >= utcnow(),
            )
        result = await self.db.execute(
            query.order_by(ScheduledPost.scheduled_for, ScheduledPost.id).limit(limit)
        )
        return list(result.scalars().all())

    async def review_scheduled_post(
        self,
        post_id: int,
        decision,
        company_id: Optional[str] = None,
        can_publish: bool = False,
    ) -> ScheduledPost:
        """
        Approve or reject a post that has not been published.

        A post can only be rejected before any platform has been attempted.

        Raises:
            PermissionDeniedError: Caller lacks publishing rights
            ValidationError: Bad decision, post no longer scheduled, or rejecting a post
                that has started publishing
            ConcurrencyConflict: Post changed concurrently
        """
        if not can_publish:
            raise PermissionDeniedError("Publishing rights are required to review posts")
        approval = APPROVAL_DECISIONS.get(str(getattr(decision, "value", decision)).lower())
        if approval is None:
            raise ValidationError(f"Invalid review decision: {decision!r}")

        post = await self.require_post(post_id, company_id)
        if post.approval_status == approval:
            return post
        if post.status != PostStatus.SCHEDULED:
            raise ValidationError(f"Post {post_id} is {post.status.value} and can no longer be reviewed")

        conditions = [
            ScheduledPost.id == post_id,
            ScheduledPost.status == PostStatus.SCHEDULED,
            ScheduledPost.approval_status == post.approval_status,
        ]
        if approval == ApprovalStatus.REJECTED:
            started = [d.platform for d in post.deliveries if _delivery_started(d)]
            if started:
                raise ValidationError(
                    f"Post {post_id} has started publishing on {', '.join(started)}; "
                    "it can no longer be rejected"
                )
            conditions.append(~exists().where(
                PostDelivery.post_id == post_id,
                or_(PostDelivery.status != DeliveryStatus.SCHEDULED, PostDelivery.retry_count > 0),
            ))

        result = await self.db.execute(
            update(ScheduledPost)
            .where(*conditions)
            .values(approval_status=approval, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConcurrencyConflict(f"Post {post_id} was changed concurrently")

        await self.db.commit()
        logger.info(f"Post {post_id} {approval.value}")
        return await self.get_post(post_id)

    async def retry_scheduled_post(self, post_id: int, company_id: Optional[str] = None) -> ScheduledPost:
        """Re-arm the failed deliveries of a failed post for the next sweep."""
        post = await self.require_post(post_id, company_id)
        if post.status != PostStatus.FAILED:
            raise ValidationError(f"Post {post_id} is {post.status.value}; only failed posts can be retried")

        await self.db.execute(
            update(PostDelivery)
            .where(PostDelivery.post_id == post_id, PostDelivery.status == DeliveryStatus.FAILED)
            .values(
                status=DeliveryStatus.SCHEDULED,
                retry_count=0,
                next_attempt_at=utcnow(),
                error_message=None,
                claim_token=None,
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await recompute_post_status(self.db, post_id)
        await self.db.commit()
        logger.info(f"Post {post_id} re-armed for retry")
        return await self.get_post(post_id)

    async def cancel_scheduled_post(self, post_id: int, company_id: Optional[str] = None) -> bool:
        """
        Delete a post that has not started publishing.

        Raises:
            ValidationError: A delivery is published or in flight
        """
        post = await self.get_post(post_id, company_id)
        if not post:
            return False
        started = [
            d.platform for d in post.deliveries
            if d.status in (DeliveryStatus.PUBLISHED, DeliveryStatus.PUBLISHING)
        ]
        if started:
            raise ValidationError(f"Post {post_id} already published to {', '.join(started)}")

        result = await self.db.execute(
            delete(ScheduledPost)
            .where(
                ScheduledPost.id == post_id,
                ~ScheduledPost.id.in_(
                    select(PostDelivery.post_id).where(
                        PostDelivery.status.in_([DeliveryStatus.PUBLISHED, DeliveryStatus.PUBLISHING])
                    )
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConcurrencyConflict(f"Post {post_id} started publishing")
        await self.db.commit()
        logger.info(f"Cancelled post {post_id}")
        return True

    async def invalidate_posts_for_clips(self, clip_ids: Iterable[int]) -> int:
        """
        Invalidate posts whose clip is going away. Does not commit.

        Posts with nothing published are deleted. Posts that already reached
        a platform are kept as history; their unfinished deliveries fail.
        """
        clip_ids = list(clip_ids)
        if not clip_ids:
            return 0

        result = await self.db.execute(
            select(ScheduledPost)
            .where(ScheduledPost.clip_id.in_(clip_ids))
            .options(selectinload(ScheduledPost.deliveries))
        )
        posts = list(result.scalars().all())

        for post in posts:
            if any(d.status == DeliveryStatus.PUBLISHED for d in post.deliveries):
                await self.db.execute(
                    update(PostDelivery)
                    .where(
                        PostDelivery.post_id == post.id,
                        PostDelivery.status != DeliveryStatus.PUBLISHED,
                    )
                    .values(
                        status=DeliveryStatus.FAILED,
                        error_message="Clip deleted",
                        claim_token=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                await recompute_post_status(self.db, post.id)
            else:
                await self.db.execute(
                    delete(ScheduledPost)
                    .where(ScheduledPost.id == post.id)
                    .execution_options(synchronize_session=False)
                )

        if posts:
            logger.info(f"Invalidated {len(posts)} scheduled posts for clips {clip_ids}")
        return len(posts)

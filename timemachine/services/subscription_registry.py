"""Helpers for managing followed channels."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timemachine.db.models import Subscription
from timemachine.services.content_fetcher import SubscriptionTarget


async def list_subscriptions(session: AsyncSession) -> Sequence[Subscription]:
    """Return all subscriptions in the order they were added."""

    result = await session.scalars(select(Subscription).order_by(Subscription.added_at, Subscription.id))
    return list(result)


async def add_subscription(
    session: AsyncSession,
    *,
    name: str,
    channel_id: str | None = None,
) -> Subscription | None:
    """Create a subscription; returns None for blank names or duplicates."""

    name = name.strip()
    channel_id = (channel_id or "").strip() or None
    if not name:
        return None

    conditions = [func.lower(Subscription.name) == name.lower()]
    if channel_id:
        conditions.append(Subscription.channel_id == channel_id)
    existing = await session.scalar(select(Subscription).where(or_(*conditions)))
    if existing is not None:
        return None

    subscription = Subscription(name=name, channel_id=channel_id)
    session.add(subscription)
    await session.flush()
    return subscription


async def remove_subscription(session: AsyncSession, subscription_id: int) -> bool:
    subscription = await session.get(Subscription, subscription_id)
    if subscription is None:
        return False

    await session.delete(subscription)
    await session.flush()
    return True


async def set_channel_id(session: AsyncSession, subscription_id: int, channel_id: str) -> bool:
    """Attach a resolved channel id; refuses ids already owned by another subscription."""

    subscription = await session.get(Subscription, subscription_id)
    if subscription is None:
        return False

    owner = await session.scalar(select(Subscription.id).where(Subscription.channel_id == channel_id))
    if owner is not None and owner != subscription_id:
        return False

    subscription.channel_id = channel_id
    await session.flush()
    return True


async def remember_channel_ids(session: AsyncSession, targets: Sequence[SubscriptionTarget]) -> int:
    """Persist channel ids resolved during a fetch; returns how many rows changed."""

    resolved = {target.name.lower(): target.channel_id for target in targets if target.channel_id}
    if not resolved:
        return 0

    updated = 0
    for subscription in await list_subscriptions(session):
        channel_id = resolved.get(subscription.name.lower())
        if channel_id and subscription.channel_id is None:
            if await set_channel_id(session, subscription.id, channel_id):
                updated += 1
    return updated


def as_targets(subscriptions: Sequence[Subscription]) -> list[SubscriptionTarget]:
    return [SubscriptionTarget(name=sub.name, channel_id=sub.channel_id) for sub in subscriptions]

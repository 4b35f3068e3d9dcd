"""API endpoints for followed channels."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from timemachine.db.models import Subscription
from timemachine.db.session import get_session
from timemachine.schema.subscription import (
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
)
from timemachine.services.subscription_registry import (
    add_subscription,
    list_subscriptions,
    remove_subscription,
)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


def _to_response(subscription: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        name=subscription.name,
        channel_id=subscription.channel_id,
        added_at=subscription.added_at,
    )


@router.get("", response_model=SubscriptionListResponse)
async def list_followed(session: AsyncSession = Depends(get_session)) -> SubscriptionListResponse:
    subscriptions = await list_subscriptions(session)
    return SubscriptionListResponse(subscriptions=[_to_response(sub) for sub in subscriptions])


@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def follow_channel(
    payload: SubscriptionCreateRequest,
    session: AsyncSession = Depends(get_session),
) -> SubscriptionResponse:
    subscription = await add_subscription(session, name=payload.name, channel_id=payload.channel_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Channel already followed or name empty")
    await session.commit()
    return _to_response(subscription)


@router.delete("/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_channel(subscription_id: int, session: AsyncSession = Depends(get_session)) -> None:
    removed = await remove_subscription(session, subscription_id)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    await session.commit()

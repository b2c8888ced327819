import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from dari_insights.api.dependencies import get_insights, unwrap_or_raise
from dari_insights.api.schemas import DetectSubscriptionsRequest, RemindersRequest
from dari_insights.models import Subscription, SubscriptionAlert
from dari_insights.services.insights import InsightsService

router = APIRouter(prefix="/subscriptions")


@router.post("/detect", response_model=list[Subscription])
async def detect_subscriptions(
    req: DetectSubscriptionsRequest,
    insights: Annotated[InsightsService, Depends(get_insights)],
) -> list[Subscription]:
    return unwrap_or_raise(await asyncio.to_thread(insights.detect_subscriptions, req.as_of))


@router.get("/upcoming", response_model=list[Subscription])
async def upcoming_renewals(
    insights: Annotated[InsightsService, Depends(get_insights)],
    days: Annotated[int, Query(ge=0, le=366)] = 7,
) -> list[Subscription]:
    return unwrap_or_raise(await asyncio.to_thread(insights.upcoming_renewals, days))


@router.post("/reminders", response_model=list[SubscriptionAlert])
async def schedule_reminders(
    req: RemindersRequest,
    insights: Annotated[InsightsService, Depends(get_insights)],
) -> list[SubscriptionAlert]:
    return unwrap_or_raise(await asyncio.to_thread(insights.schedule_reminders, req.now))

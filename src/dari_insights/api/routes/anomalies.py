import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from dari_insights.api.dependencies import get_insights, parse_date_range, unwrap_or_raise
from dari_insights.api.schemas import DateRangeRequest
from dari_insights.models import AnomalyReport
from dari_insights.services.insights import InsightsService

router = APIRouter()


@router.post("/anomalies/detect", response_model=AnomalyReport)
async def detect_anomalies(
    req: DateRangeRequest,
    insights: Annotated[InsightsService, Depends(get_insights)],
) -> AnomalyReport:
    start, end = parse_date_range(req.start_date, req.end_date)
    return unwrap_or_raise(await asyncio.to_thread(insights.detect_anomalies, start, end))

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from dari_insights.api.dependencies import get_insights, parse_date_range, unwrap_or_raise
from dari_insights.api.schemas import MergeRequest, TransactionsRequest
from dari_insights.models import DuplicateGroup, MergeResult, Transaction
from dari_insights.services.insights import InsightsService

router = APIRouter()


@router.post("/transactions")
async def add_transactions(
    req: TransactionsRequest,
    insights: Annotated[InsightsService, Depends(get_insights)],
) -> dict[str, int | str]:
    added = unwrap_or_raise(await asyncio.to_thread(insights.add_transactions, req.transactions))
    return {"status": "success", "added": added}


@router.get("/transactions", response_model=list[Transaction])
async def list_transactions(
    insights: Annotated[InsightsService, Depends(get_insights)],
    start_date: str | None = None,
    end_date: str | None = None,
) -> list[Transaction]:
    start, end = parse_date_range(start_date, end_date)
    return unwrap_or_raise(await asyncio.to_thread(insights.list_transactions, start, end))


@router.get("/duplicates", response_model=list[DuplicateGroup])
async def find_duplicates(
    insights: Annotated[InsightsService, Depends(get_insights)],
    start_date: str | None = None,
    end_date: str | None = None,
) -> list[DuplicateGroup]:
    if start_date is None and end_date is None:
        result = await asyncio.to_thread(insights.find_duplicates)
    else:
        start, end = parse_date_range(start_date, end_date)
        result = await asyncio.to_thread(insights.find_duplicates, start, end)
    return unwrap_or_raise(result)


@router.post("/transactions/merge", response_model=MergeResult)
async def merge_transactions(
    req: MergeRequest,
    insights: Annotated[InsightsService, Depends(get_insights)],
) -> MergeResult:
    result = await asyncio.to_thread(
        insights.merge_transactions,
        req.transaction_ids,
        req.strategy,
        req.keep_originals,
    )
    return unwrap_or_raise(result)

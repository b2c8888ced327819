import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from dari_insights.api.dependencies import get_insights, get_service, parse_date_range, unwrap_or_raise
from dari_insights.api.schemas import CategorizeRequest, DateRangeRequest, LearnRequest, MatchesRequest
from dari_insights.logger import get_logger
from dari_insights.manager import CategorizerService
from dari_insights.models import CategorizationResult, CategoryMatch, MerchantMapping
from dari_insights.services.insights import InsightsService

logger = get_logger(__name__)

router = APIRouter()


@router.post("/categorize", response_model=CategorizationResult | None)
async def categorize_transaction(
    req: CategorizeRequest,
    insights: Annotated[InsightsService, Depends(get_insights)],
) -> CategorizationResult | None:
    result = await asyncio.to_thread(insights.categorize, req.transaction)
    return unwrap_or_raise(result)


@router.post("/categorize/range", response_model=dict[str, CategorizationResult | None])
async def categorize_range(
    req: DateRangeRequest,
    insights: Annotated[InsightsService, Depends(get_insights)],
) -> dict[str, CategorizationResult | None]:
    start, end = parse_date_range(req.start_date, req.end_date)
    return unwrap_or_raise(await asyncio.to_thread(insights.categorize_range, start, end))


@router.post("/categorize/matches", response_model=list[CategoryMatch])
async def category_matches(
    req: MatchesRequest,
    service: Annotated[CategorizerService, Depends(get_service)],
) -> list[CategoryMatch]:
    return await asyncio.to_thread(service.category_matches, req.transaction, req.limit)


@router.post("/learn", response_model=MerchantMapping)
async def learn_transaction(
    req: LearnRequest,
    insights: Annotated[InsightsService, Depends(get_insights)],
) -> MerchantMapping:
    result = await asyncio.to_thread(insights.learn, req.transaction_id, req.category_id, req.feedback)
    mapping = unwrap_or_raise(result)
    logger.info("[LEARN] Transaction %s -> %s", req.transaction_id, req.category_id)
    return mapping


@router.get("/categories")
async def get_categories(
    service: Annotated[CategorizerService, Depends(get_service)],
) -> list[dict[str, str | None]]:
    tree = service.categories
    return [
        {
            "id": category.id,
            "name": category.name,
            "type": category.type.value,
            "parent_id": category.parent_id,
            "path": tree.full_path(category),
        }
        for category in sorted(tree, key=tree.full_path)
    ]

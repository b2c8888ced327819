import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from dari_insights.api.dependencies import get_mappings
from dari_insights.models import CategorySuggestion, MerchantMapping
from dari_insights.merchants.mapping import MerchantMappingService

router = APIRouter(prefix="/mappings")


@router.get("", response_model=list[MerchantMapping])
async def list_mappings(
    mappings: Annotated[MerchantMappingService, Depends(get_mappings)],
) -> list[MerchantMapping]:
    return mappings.repository.get_all_mappings()


@router.get("/suggestions", response_model=list[CategorySuggestion])
async def suggest_categories(
    merchant: str,
    mappings: Annotated[MerchantMappingService, Depends(get_mappings)],
) -> list[CategorySuggestion]:
    return await asyncio.to_thread(mappings.suggest_category, merchant)


@router.get("/statistics")
async def mapping_statistics(
    mappings: Annotated[MerchantMappingService, Depends(get_mappings)],
) -> dict[str, float | int]:
    return mappings.statistics()


@router.get("/similarity-index")
async def similarity_index(
    mappings: Annotated[MerchantMappingService, Depends(get_mappings)],
) -> dict[str, list[str]]:
    return await asyncio.to_thread(mappings.build_similarity_index)


@router.post("/merge-duplicates")
async def merge_duplicate_mappings(
    mappings: Annotated[MerchantMappingService, Depends(get_mappings)],
) -> dict[str, int | str]:
    removed = await asyncio.to_thread(mappings.merge_duplicates)
    return {"status": "success", "removed": removed}

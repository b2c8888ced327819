from datetime import datetime

from fastapi import HTTPException, Request

from dari_insights.domain.result import Failure, Result, T
from dari_insights.errors import ExternalFailure, NotFoundError, ValidationError
from dari_insights.manager import CategorizerService
from dari_insights.merchants.mapping import MerchantMappingService
from dari_insights.services.insights import InsightsService, resolve_date_range


def get_service(request: Request) -> CategorizerService:
    service = getattr(request.app.state, "service", None)
    if not service:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return service


def get_mappings(request: Request) -> MerchantMappingService:
    mappings = getattr(request.app.state, "mappings", None)
    if not mappings:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return mappings


def get_insights(request: Request) -> InsightsService:
    insights = getattr(request.app.state, "insights", None)
    if not insights:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return insights


def status_for(failure: Failure) -> int:
    if isinstance(failure.error, ValidationError):
        return 400
    if isinstance(failure.error, NotFoundError):
        return 404
    if isinstance(failure.error, ExternalFailure):
        return 502
    return 500


def unwrap_or_raise(result: Result[T]) -> T:
    if isinstance(result, Failure):
        raise HTTPException(status_code=status_for(result), detail=result.message)
    return result.value


def parse_date_range(start_date: str | None, end_date: str | None) -> tuple[datetime, datetime]:
    try:
        return resolve_date_range(start_date, end_date)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


from typing import Any

from fastapi import APIRouter

from dari_insights.core import configuration, settings

router = APIRouter()


@router.get("/config")
async def get_config() -> dict[str, Any]:
    return {
        "config_path": settings.get_config_path(),
        "fields": configuration.describe_config(),
    }

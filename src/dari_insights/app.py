import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dari_insights.analysis.tracking import SubscriptionTracker
from dari_insights.api.routes import anomalies, categorize, config, mappings, subscriptions, transactions
from dari_insights.core import settings
from dari_insights.core.configuration import load_engine_config
from dari_insights.domain.categories import DEFAULT_CATEGORIES
from dari_insights.domain.result import unwrap
from dari_insights.logger import get_logger, setup_logging
from dari_insights.manager import CategorizerService
from dari_insights.merchants.mapping import MerchantMappingService
from dari_insights.merchants.store import JsonMerchantMappingRepository
from dari_insights.repositories import (
    InMemoryCategorySource,
    InMemorySubscriptionRepository,
    InMemoryTransactionStore,
)
from dari_insights.services.insights import InsightsService

logger = get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()
        engine_config = load_engine_config()

        repository = JsonMerchantMappingRepository(os.path.join(settings.DATA_DIR, settings.MAPPINGS_FILENAME))
        mapping_service = MerchantMappingService(
            repository,
            similarity_threshold=engine_config.merchant_similarity_threshold,
        )
        service = CategorizerService(
            mappings=mapping_service,
            min_match_confidence=engine_config.min_match_confidence,
        )
        insights = InsightsService(
            transactions=InMemoryTransactionStore(),
            categories=InMemoryCategorySource(DEFAULT_CATEGORIES),
            categorizer=service,
            tracker=SubscriptionTracker(InMemorySubscriptionRepository()),
            config=engine_config,
        )
        unwrap(insights.refresh_categories())

        app.state.service = service
        app.state.mappings = mapping_service
        app.state.insights = insights

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")

    app = FastAPI(title="Dari Insights", lifespan=lifespan)

    app.include_router(transactions.router)
    app.include_router(categorize.router)
    app.include_router(mappings.router)
    app.include_router(anomalies.router)
    app.include_router(subscriptions.router)
    app.include_router(config.router)

    return app

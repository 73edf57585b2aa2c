import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict
from fastapi import FastAPI
from redis.exceptions import RedisError
from strawberry.fastapi import GraphQLRouter
from pricegraph.cache import TTLCache
from pricegraph.config import settings
from pricegraph.schema import schema
from pricegraph.services.oracle import BtcOracle
from pricegraph.services.price_service import PriceService
from pricegraph.services.snapshot_store import SnapshotStore
from pricegraph.services.vault_loader import VaultLoader

logger = logging.getLogger(__name__)


def build_price_service() -> PriceService:
    return PriceService(
        loader=VaultLoader(settings.VAULT_API_URL),
        oracle=BtcOracle(settings.ORACLE_API_URL),
        store=SnapshotStore(
            settings.REDIS_URL,
            ttl_seconds=settings.SNAPSHOT_TTL,
            stale_after_seconds=settings.STALE_AFTER
        ),
        cache=TTLCache(ttl=settings.CACHE_TTL),
        settings=settings
    )


def create_app(price_service: PriceService, run_background: bool = True) -> FastAPI:
    # Track background tasks
    background_tasks = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            try:
                await price_service.store.initialize()
            except RedisError as e:
                # The store reconnects on first use; pricing works from memory meanwhile
                logger.warning(f"Redis unavailable at startup: {str(e)}")

            if run_background:
                refresh_task = asyncio.create_task(price_service.start_updating())
                background_tasks.add(refresh_task)
                refresh_task.add_done_callback(background_tasks.discard)

            logger.info("Background tasks started successfully")
            yield
        except Exception as e:
            logger.error(f"Error during startup: {str(e)}")
            raise
        finally:
            logger.info("Shutting down background tasks...")
            for task in background_tasks:
                task.cancel()

            if background_tasks:
                await asyncio.gather(*background_tasks, return_exceptions=True)
            await price_service.aclose()
            logger.info("All background tasks shut down")

    # Create context for GraphQL
    async def get_context() -> Dict[str, Any]:
        return {"price_service": price_service}

    app = FastAPI(lifespan=lifespan)

    # Add GraphQL route with context
    graphql_app = GraphQLRouter(
        schema,
        context_getter=get_context,
    )
    app.include_router(graphql_app, prefix="/graphql")

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        stats = await price_service.stats()
        return {"status": "ok", "lastSnapshot": stats.get("last_snapshot")}

    return app


app = create_app(build_price_service())

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

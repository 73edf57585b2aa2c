import asyncio
import logging
import time
from typing import Any, Dict, Iterable, Optional, Tuple
from pricegraph.cache import TTLCache
from pricegraph.config import Settings, settings as default_settings
from pricegraph.errors import StaleSnapshot, UpstreamError
from pricegraph.models import PriceFailure, PriceResponse, PriceSnapshot
from pricegraph.services.oracle import BtcOracle
from pricegraph.services.pipeline import compute_prices
from pricegraph.services.snapshot_store import SnapshotStore
from pricegraph.services.vault_loader import VaultLoader

logger = logging.getLogger(__name__)

LATEST_KEY = "latest"


class PriceService:
    """Keeps the price snapshot fresh and answers price queries from it."""

    def __init__(
            self,
            loader: VaultLoader,
            oracle: BtcOracle,
            store: SnapshotStore,
            cache: TTLCache,
            settings: Settings = default_settings
    ):
        self.loader = loader
        self.oracle = oracle
        self.store = store
        self.cache = cache
        self.settings = settings
        self._refresh_lock = asyncio.Lock()

    async def refresh(self) -> PriceSnapshot:
        """Fetch a fresh vault snapshot and anchor price, reprice everything and persist it"""
        async with self._refresh_lock:
            (vaults, rejected), btc_price = await asyncio.gather(
                self.loader.fetch_vaults(),
                self.oracle.fetch_btc_price()
            )
            snapshot = compute_prices(
                vaults,
                {self.settings.ANCHOR_TOKEN_ID: btc_price},
                settings=self.settings,
                rejected_vaults=rejected
            )

            saved = await self.store.save_snapshot(snapshot)
            if not saved:
                logger.warning("Snapshot computed but not persisted; serving it from memory only")
            self.cache.set(LATEST_KEY, snapshot)
            return snapshot

    async def latest_snapshot(self, now: Optional[float] = None) -> Tuple[PriceSnapshot, bool]:
        """
        Get the snapshot to answer queries from.

        Returns:
            Tuple of (snapshot, stale). A stale snapshot is only returned when
            recomputation failed and it is younger than MAX_STALE.
        """
        cached = self.cache.get(LATEST_KEY)
        if cached is not None:
            return cached, False

        stored = await self.store.get_latest_snapshot()
        if stored is not None and not self.store.is_stale(stored, now):
            self.cache.set(LATEST_KEY, stored)
            return stored, False

        try:
            return await self.refresh(), False
        except UpstreamError as e:
            if stored is None:
                logger.error(f"Price refresh failed and no snapshot is stored: {str(e)}")
                raise
            age = self.store.age(stored, now)
            if age > self.settings.MAX_STALE:
                raise StaleSnapshot(
                    f"Price refresh failed and the stored snapshot is {age:.0f}s old", age
                ) from e
            logger.warning(f"Price refresh failed, serving snapshot {age:.0f}s old: {str(e)}")
            return stored, True

    async def get_prices(self, token_ids: Iterable[str], include_paths: bool = False) -> PriceResponse:
        snapshot, stale = await self.latest_snapshot()
        results = []
        for token_id in token_ids:
            if token_id in snapshot.prices:
                result = snapshot.prices[token_id]
                if not include_paths:
                    result = result.model_copy(update={"primary_path": None, "alternative_paths": []})
                results.append(result)
            elif token_id in snapshot.failures:
                results.append(snapshot.failures[token_id])
            else:
                results.append(PriceFailure(
                    token_id=token_id,
                    error="TOKEN_NOT_FOUND",
                    message=f"Token {token_id} not found in snapshot"
                ))

        return PriceResponse(snapshot_timestamp=snapshot.timestamp, stale=stale, results=results)

    async def stats(self) -> Dict[str, Any]:
        snapshot = self.cache.get(LATEST_KEY) or await self.store.get_latest_snapshot()
        if snapshot is None:
            return {"last_snapshot": None}
        return {
            "last_snapshot": snapshot.timestamp,
            "age_seconds": time.time() - snapshot.timestamp,
            **snapshot.metadata.model_dump()
        }

    async def start_updating(self):
        """Refresh the snapshot forever, every UPDATE_INTERVAL seconds"""
        logger.info("Starting background price refresh")
        while True:
            try:
                snapshot = await self.refresh()
                logger.info(f"Refresh cycle completed: {snapshot.metadata.priced} tokens priced")
            except UpstreamError as e:
                logger.error(f"Refresh cycle failed: {str(e)}")
            except Exception as e:
                logger.error(f"Error in refresh cycle: {str(e)}", exc_info=True)

            await asyncio.sleep(self.settings.UPDATE_INTERVAL)

    async def aclose(self):
        await self.loader.aclose()
        await self.oracle.aclose()
        await self.store.close()

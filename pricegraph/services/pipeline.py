import logging
import time
from collections import Counter
from typing import Dict, Iterable, Optional
from pricegraph.config import Settings, settings as default_settings
from pricegraph.models import PriceFailure, PriceResult, PriceSnapshot, SnapshotMetadata, Vault
from pricegraph.services.graph_builder import PriceGraph, build_price_graph
from pricegraph.services.path_finder import PathFinder, ReliabilityPolicy
from pricegraph.services.price_calculator import PriceCalculator

logger = logging.getLogger(__name__)


def make_calculator(
        graph: PriceGraph,
        anchor_prices: Dict[str, float],
        settings: Settings = default_settings,
        now: Optional[float] = None
) -> PriceCalculator:
    """Wire a path finder and calculator for one graph build."""
    path_finder = PathFinder(
        graph,
        policy=ReliabilityPolicy(
            liquidity_scale=settings.LIQUIDITY_SCALE,
            hop_exponent=settings.HOP_PENALTY_EXPONENT
        ),
        max_hops=settings.MAX_HOPS,
        max_alternatives=settings.MAX_ALTERNATIVE_PATHS
    )
    return PriceCalculator(
        graph,
        path_finder,
        anchor_prices,
        sbtc_token_id=settings.ANCHOR_TOKEN_ID,
        stablecoin_symbols=settings.STABLECOIN_SYMBOLS,
        apply_fees=settings.APPLY_FEES,
        now=now
    )


def compute_prices(
        vaults: Iterable[Vault],
        anchor_prices: Dict[str, float],
        settings: Settings = default_settings,
        now: Optional[float] = None,
        rejected_vaults: int = 0
) -> PriceSnapshot:
    """
    Run one full pricing pass over a vault snapshot.

    Args:
        vaults: Validated vault records
        anchor_prices: USD prices of the anchor tokens, must include sBTC
        settings: Path search and pricing knobs
        now: Timestamp stamped on the graph and every result
        rejected_vaults: Malformed records dropped before this pass

    Returns:
        A new PriceSnapshot covering every token in the snapshot
    """
    started = time.perf_counter()
    timestamp = time.time() if now is None else now

    graph = build_price_graph(vaults, now=timestamp)
    calculator = make_calculator(graph, anchor_prices, settings, now=timestamp)

    token_ids = sorted(set(graph.known_token_ids()) | {v.contract_id for v in graph.lp_vaults()})
    prices: Dict[str, PriceResult] = {}
    failures: Dict[str, PriceFailure] = {}
    for token_id in token_ids:
        result = calculator.price(token_id)
        if isinstance(result, PriceFailure):
            failures[token_id] = result
        else:
            prices[token_id] = result

    source_counts = Counter(result.source for result in prices.values())
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"Pricing pass complete: {len(prices)} priced, {len(failures)} failed in {elapsed_ms:.1f}ms"
    )
    return PriceSnapshot(
        timestamp=timestamp,
        anchor_prices=dict(anchor_prices),
        prices=prices,
        failures=failures,
        metadata=SnapshotMetadata(
            total_tokens=len(token_ids),
            priced=len(prices),
            failed=len(failures),
            source_counts=dict(sorted(source_counts.items())),
            skipped_pools=list(graph.skipped_pools),
            rejected_vaults=rejected_vaults,
            calculation_ms=elapsed_ms
        )
    )

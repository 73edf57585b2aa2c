import logging
from dataclasses import dataclass
from typing import Iterable, List, NamedTuple
import networkx as nx
from pricegraph.config import MAX_HOPS_CEILING
from pricegraph.errors import NoLiquidityPath, TokenNotFound
from pricegraph.models import PricePath
from pricegraph.services.graph_builder import PriceGraph

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReliabilityPolicy:
    """
    Scores how far a price path can be trusted.

    The weakest pool on a path bounds its reliability, and every extra hop
    compounds slippage, so the score is a liquidity factor in [0, 1)
    multiplied by a hop penalty in (0, 1]. Both constants are tunable.
    """
    liquidity_scale: float = 1000.0
    hop_exponent: float = 0.5

    def liquidity_factor(self, min_liquidity: float) -> float:
        if min_liquidity <= 0:
            return 0.0
        return min_liquidity / (min_liquidity + self.liquidity_scale)

    def hop_penalty(self, hops: int) -> float:
        return 1.0 / (hops ** self.hop_exponent)

    def score(self, min_liquidity: float, hops: int) -> float:
        return self.liquidity_factor(min_liquidity) * self.hop_penalty(hops)


class RouteSelection(NamedTuple):
    primary: PricePath
    alternatives: List[PricePath]


def _ranking_key(path: PricePath):
    return -path.reliability, path.hops, -path.total_liquidity, tuple(path.pools)


class PathFinder:
    def __init__(
            self,
            graph: PriceGraph,
            policy: ReliabilityPolicy = ReliabilityPolicy(),
            max_hops: int = 4,
            max_alternatives: int = 5
    ):
        if not 1 <= max_hops <= MAX_HOPS_CEILING:
            raise ValueError(f"max_hops must be between 1 and {MAX_HOPS_CEILING}, got {max_hops}")
        self.graph = graph
        self.policy = policy
        self.max_hops = max_hops
        self.max_alternatives = max_alternatives

    def find_paths(self, source: str, anchors: Iterable[str]) -> List[PricePath]:
        """
        Enumerate every simple path from source to any anchor.

        Args:
            source: Token id to price
            anchors: Token ids whose USD price is known

        Returns:
            Paths ordered best first
        """
        paths: List[PricePath] = []
        if not self.graph.has_token(source):
            return paths

        for anchor in sorted(set(anchors)):
            if anchor == source or not self.graph.has_token(anchor):
                continue
            for edge_path in nx.all_simple_edge_paths(
                    self.graph.nx_graph,
                    source,
                    anchor,
                    cutoff=self.max_hops
            ):
                paths.append(self._score_path(source, edge_path))

        paths.sort(key=_ranking_key)
        return paths

    def best_route(self, source: str, anchors: Iterable[str]) -> RouteSelection:
        """Pick the primary path and the top alternatives for a token.

        Raises TokenNotFound when the token is not in the snapshot and
        NoLiquidityPath when no pool route reaches an anchor.
        """
        if not self.graph.knows_token(source):
            raise TokenNotFound(f"Token {source} not found in snapshot", token_id=source)

        paths = self.find_paths(source, anchors)
        if not paths:
            raise NoLiquidityPath(
                f"No liquidity path from {source} to an anchor within {self.max_hops} hops",
                token_id=source
            )

        return RouteSelection(paths[0], paths[1:1 + self.max_alternatives])

    def _score_path(self, source: str, edge_path) -> PricePath:
        tokens = [source]
        pools = []
        liquidities = []
        for u, v, pool_id in edge_path:
            edge = self.graph.edge(u, v, pool_id)
            tokens.append(edge.other(tokens[-1]))
            pools.append(pool_id)
            liquidities.append(edge.liquidity)

        hops = len(pools)
        min_liquidity = min(liquidities)
        return PricePath(
            tokens=tokens,
            pools=pools,
            hops=hops,
            min_liquidity=min_liquidity,
            total_liquidity=sum(liquidities),
            reliability=self.policy.score(min_liquidity, hops)
        )

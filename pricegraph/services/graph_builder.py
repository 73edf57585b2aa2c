import logging
import math
import time
from collections import defaultdict
from typing import Dict, Iterable, List, Optional
import networkx as nx
from pricegraph.models import PoolEdge, TokenInfo, TokenNode, Vault

logger = logging.getLogger(__name__)


class PriceGraph:
    """Read-only liquidity graph built from one vault snapshot.

    Nodes are token contract ids and edges are pools. Parallel pools between
    the same pair stay separate edges keyed by pool contract id.
    """

    def __init__(
            self,
            graph: nx.MultiGraph,
            vaults: Dict[str, Vault],
            token_info: Dict[str, TokenInfo],
            skipped_pools: List[str],
            built_at: float
    ):
        self._graph = nx.freeze(graph)
        self._vaults = vaults
        self._token_info = token_info
        self.skipped_pools = skipped_pools
        self.built_at = built_at

    @property
    def nx_graph(self) -> nx.MultiGraph:
        return self._graph

    def has_token(self, token_id: str) -> bool:
        return token_id in self._graph

    def knows_token(self, token_id: str) -> bool:
        """True when the token appears anywhere in the snapshot."""
        return token_id in self._graph or token_id in self._token_info

    def token(self, token_id: str) -> TokenNode:
        return self._graph.nodes[token_id]["node"]

    def token_info(self, token_id: str) -> Optional[TokenInfo]:
        return self._token_info.get(token_id)

    def tokens(self) -> List[TokenNode]:
        return [data["node"] for _, data in self._graph.nodes(data=True)]

    def known_token_ids(self) -> List[str]:
        return sorted(set(self._graph.nodes) | set(self._token_info))

    def edge(self, token_a: str, token_b: str, pool_id: str) -> PoolEdge:
        return self._graph.edges[token_a, token_b, pool_id]["edge"]

    def edges_for(self, token_id: str) -> List[PoolEdge]:
        if token_id not in self._graph:
            return []
        return [data["edge"] for _, _, data in self._graph.edges(token_id, data=True)]

    def pools(self) -> List[PoolEdge]:
        return [data["edge"] for _, _, data in self._graph.edges(data=True)]

    def vault(self, contract_id: str) -> Optional[Vault]:
        return self._vaults.get(contract_id)

    def lp_vaults(self) -> List[Vault]:
        return list(self._vaults.values())

    def stats(self) -> Dict[str, float]:
        return {
            "total_tokens": self._graph.number_of_nodes(),
            "total_pools": self._graph.number_of_edges(),
            "skipped_pools": len(self.skipped_pools),
            "built_at": self.built_at
        }


def to_decimal_amount(atomic, decimals: int) -> float:
    return float(atomic) / (10 ** decimals)


def _valid_reserves(reserve_a: float, reserve_b: float) -> bool:
    return (
            math.isfinite(reserve_a) and math.isfinite(reserve_b)
            and reserve_a > 0 and reserve_b > 0
    )


def build_price_graph(vaults: Iterable[Vault], now: Optional[float] = None) -> PriceGraph:
    """Build the liquidity graph for a vault snapshot.

    Only POOL vaults contribute edges. Pools with zero, negative or
    non-finite reserves on either side are skipped and reported in
    ``PriceGraph.skipped_pools``.
    """
    built_at = time.time() if now is None else now
    graph = nx.MultiGraph()
    pool_vaults: Dict[str, Vault] = {}
    token_info: Dict[str, TokenInfo] = {}
    skipped: List[str] = []
    edges: List[PoolEdge] = []

    for vault in vaults:
        for info in (vault.token_a, vault.token_b):
            known = token_info.get(info.contract_id)
            # A subnet record carries the base link the plain record lacks
            if known is None or (info.base and not known.base):
                token_info[info.contract_id] = info

        if vault.type != "POOL":
            logger.debug(f"Skipping {vault.type} vault {vault.contract_id}: no constant-product reserves")
            continue
        if vault.contract_id in pool_vaults:
            logger.warning(f"Duplicate pool record {vault.contract_id}, keeping the first")
            continue

        pool_vaults[vault.contract_id] = vault
        # Tokens of a pool are graph nodes even when the pool itself is unusable
        for info in (vault.token_a, vault.token_b):
            if info.contract_id not in graph:
                graph.add_node(info.contract_id)

        reserve_a = to_decimal_amount(vault.reserves_a, vault.token_a.decimals)
        reserve_b = to_decimal_amount(vault.reserves_b, vault.token_b.decimals)
        if not _valid_reserves(reserve_a, reserve_b):
            logger.warning(
                f"Invalid reserves for pool {vault.contract_id}: A={vault.reserves_a}, B={vault.reserves_b}"
            )
            skipped.append(vault.contract_id)
            continue

        edges.append(PoolEdge(
            pool_id=vault.contract_id,
            token_a=vault.token_a.contract_id,
            token_b=vault.token_b.contract_id,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
            fee_rate=vault.fee_rate,
            liquidity=math.sqrt(reserve_a * reserve_b),
            last_updated=built_at
        ))

    liquidity: Dict[str, float] = defaultdict(float)
    pool_count: Dict[str, int] = defaultdict(int)
    for edge in edges:
        liquidity[edge.token_a] += edge.reserve_a
        liquidity[edge.token_b] += edge.reserve_b
        pool_count[edge.token_a] += 1
        pool_count[edge.token_b] += 1
        graph.add_edge(edge.token_a, edge.token_b, key=edge.pool_id, edge=edge)

    for token_id in graph.nodes:
        info = token_info[token_id]
        graph.nodes[token_id]["node"] = TokenNode(
            contract_id=token_id,
            symbol=info.symbol,
            decimals=info.decimals,
            total_liquidity=liquidity[token_id],
            pool_count=pool_count[token_id]
        )

    logger.info(
        f"Graph built: {graph.number_of_nodes()} tokens, {graph.number_of_edges()} pools, "
        f"{len(skipped)} skipped"
    )
    return PriceGraph(graph, pool_vaults, token_info, skipped, built_at)

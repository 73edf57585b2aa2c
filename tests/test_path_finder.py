import pytest

from pricegraph.errors import NoLiquidityPath, TokenNotFound
from pricegraph.services.graph_builder import build_price_graph
from pricegraph.services.path_finder import PathFinder, ReliabilityPolicy

from helpers import SBTC, SBTC_TOKEN, TOKEN_A, TOKEN_B, TOKEN_C, token, two_hop_vaults, vault

TOKEN_D = "SP1TEST.token-d"

# 1000 units on both sides, so every pool has liquidity 1000
EVEN = 1_000_000_000
EVEN_SBTC = 100_000_000_000


def _triangle():
    """A can reach sBTC directly or through B, every pool equally deep."""
    return build_price_graph([
        vault("SP1TEST.pool-a-sbtc", token(TOKEN_A), SBTC_TOKEN, EVEN, EVEN_SBTC),
        vault("SP1TEST.pool-a-b", token(TOKEN_A), token(TOKEN_B), EVEN, EVEN),
        vault("SP1TEST.pool-b-sbtc", token(TOKEN_B), SBTC_TOKEN, EVEN, EVEN_SBTC),
    ])


def test_reliability_never_increases_with_hops():
    policy = ReliabilityPolicy()
    for liquidity in (1.0, 1_000.0, 1e9):
        scores = [policy.score(liquidity, hops) for hops in range(1, 10)]
        assert scores == sorted(scores, reverse=True)


def test_reliability_grows_with_weakest_link():
    policy = ReliabilityPolicy()
    assert policy.score(10.0, 2) < policy.score(10_000.0, 2) < 1.0
    assert policy.score(0.0, 1) == 0.0


def test_direct_path_beats_equal_liquidity_detour():
    paths = PathFinder(_triangle()).find_paths(TOKEN_A, [SBTC])

    assert [p.hops for p in paths] == [1, 2]
    assert paths[0].pools == ["SP1TEST.pool-a-sbtc"]
    assert paths[1].tokens == [TOKEN_A, TOKEN_B, SBTC]
    assert paths[0].reliability > paths[1].reliability


def test_shorter_path_wins_reliability_tie():
    finder = PathFinder(_triangle(), policy=ReliabilityPolicy(hop_exponent=0))
    paths = finder.find_paths(TOKEN_A, [SBTC])

    assert paths[0].reliability == pytest.approx(paths[1].reliability)
    assert paths[0].hops == 1


def test_deep_detour_beats_thin_direct_pool():
    graph = build_price_graph(two_hop_vaults() + [
        # 10 A against 0.0001 sBTC
        vault("SP1TEST.pool-a-sbtc-thin", token(TOKEN_A), SBTC_TOKEN, 10_000_000, 10_000),
    ])
    route = PathFinder(graph).best_route(TOKEN_A, [SBTC])

    assert route.primary.pools == ["SP1TEST.pool-a-b", "SP1TEST.pool-b-sbtc"]
    assert [p.pools for p in route.alternatives] == [["SP1TEST.pool-a-sbtc-thin"]]


def test_parallel_pools_yield_distinct_paths():
    graph = build_price_graph([
        vault("SP1TEST.pool-a-sbtc-1", token(TOKEN_A), SBTC_TOKEN, EVEN, EVEN_SBTC),
        vault("SP1TEST.pool-a-sbtc-2", token(TOKEN_A), SBTC_TOKEN, 2 * EVEN, 2 * EVEN_SBTC),
    ])
    paths = PathFinder(graph).find_paths(TOKEN_A, [SBTC])

    assert [p.pools for p in paths] == [["SP1TEST.pool-a-sbtc-2"], ["SP1TEST.pool-a-sbtc-1"]]


def test_alternatives_are_capped():
    route = PathFinder(_triangle(), max_alternatives=0).best_route(TOKEN_A, [SBTC])
    assert route.primary.hops == 1
    assert route.alternatives == []


def test_paths_longer_than_max_hops_are_ignored():
    graph = build_price_graph([
        vault("SP1TEST.pool-a-b", token(TOKEN_A), token(TOKEN_B), EVEN, EVEN),
        vault("SP1TEST.pool-b-c", token(TOKEN_B), token(TOKEN_C), EVEN, EVEN),
        vault("SP1TEST.pool-c-d", token(TOKEN_C), token(TOKEN_D), EVEN, EVEN),
        vault("SP1TEST.pool-d-sbtc", token(TOKEN_D), SBTC_TOKEN, EVEN, EVEN_SBTC),
    ])

    assert PathFinder(graph, max_hops=4).best_route(TOKEN_A, [SBTC]).primary.hops == 4
    with pytest.raises(NoLiquidityPath):
        PathFinder(graph, max_hops=3).best_route(TOKEN_A, [SBTC])


def test_max_hops_is_bounded():
    with pytest.raises(ValueError):
        PathFinder(_triangle(), max_hops=10)
    with pytest.raises(ValueError):
        PathFinder(_triangle(), max_hops=0)


def test_unknown_token_and_isolated_token_fail_differently():
    graph = build_price_graph(two_hop_vaults() + [
        vault("SP1TEST.pool-c-d", token(TOKEN_C), token(TOKEN_D), EVEN, EVEN),
    ])
    finder = PathFinder(graph)

    with pytest.raises(TokenNotFound):
        finder.best_route("SP1TEST.nowhere", [SBTC])
    with pytest.raises(NoLiquidityPath):
        finder.best_route(TOKEN_C, [SBTC])

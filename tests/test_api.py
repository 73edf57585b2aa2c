import fakeredis
import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from main import create_app
from pricegraph.cache import TTLCache
from pricegraph.services.pipeline import compute_prices
from pricegraph.services.price_service import LATEST_KEY, PriceService
from pricegraph.services.snapshot_store import SnapshotStore

from helpers import BTC_PRICE, SBTC, TOKEN_A, make_settings, two_hop_vaults

PRICES_QUERY = """
query ($ids: [String!]!, $paths: Boolean!) {
  prices(tokenIds: $ids, includePaths: $paths) {
    snapshotTimestamp
    stale
    results {
      __typename
      ... on PriceQuote { tokenId usdPrice source confidence primaryPath { hops tokens } }
      ... on PriceError { tokenId error message }
    }
  }
}
"""


class Unused:
    async def aclose(self):
        pass


@pytest.fixture
def client():
    store = SnapshotStore(
        "redis://unused",
        ttl_seconds=3600,
        stale_after_seconds=600,
        client=fakeredis.FakeAsyncRedis(decode_responses=True),
    )
    service = PriceService(Unused(), Unused(), store, TTLCache(ttl=300), settings=make_settings())
    snapshot = compute_prices(two_hop_vaults(), {SBTC: BTC_PRICE}, make_settings(), now=1000.0)
    service.cache.set(LATEST_KEY, snapshot)

    with TestClient(create_app(service, run_background=False)) as test_client:
        yield test_client


def test_prices_query_returns_tagged_results(client):
    response = client.post(
        "/graphql",
        json={"query": PRICES_QUERY, "variables": {"ids": [TOKEN_A, "SP1TEST.nowhere"], "paths": True}},
    )
    assert response.status_code == 200
    body = response.json()
    assert "errors" not in body

    prices = body["data"]["prices"]
    assert prices["snapshotTimestamp"] == 1000.0
    assert prices["stale"] is False

    quote, missing = prices["results"]
    assert quote["__typename"] == "PriceQuote"
    assert quote["usdPrice"] == pytest.approx(0.25)
    assert quote["source"] == "market"
    assert quote["primaryPath"]["hops"] == 2
    assert missing == {
        "__typename": "PriceError",
        "tokenId": "SP1TEST.nowhere",
        "error": "TOKEN_NOT_FOUND",
        "message": "Token SP1TEST.nowhere not found in snapshot",
    }


def test_prices_query_omits_paths_by_default(client):
    response = client.post(
        "/graphql",
        json={"query": PRICES_QUERY, "variables": {"ids": [TOKEN_A], "paths": False}},
    )
    quote = response.json()["data"]["prices"]["results"][0]
    assert quote["primaryPath"] is None


def test_snapshot_stats_query(client):
    response = client.post("/graphql", json={"query": "{ snapshotStats { lastSnapshot totalTokens priced failed } }"})
    stats = response.json()["data"]["snapshotStats"]
    assert stats["lastSnapshot"] == 1000.0
    assert stats["priced"] == 4
    assert stats["failed"] == 1


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "lastSnapshot": 1000.0}


def test_app_starts_when_redis_is_down():
    class UnreachableRedis(fakeredis.FakeAsyncRedis):
        async def ping(self, **kwargs):
            raise RedisConnectionError("redis down")

    store = SnapshotStore(
        "redis://unused",
        ttl_seconds=3600,
        stale_after_seconds=600,
        client=UnreachableRedis(decode_responses=True),
    )
    service = PriceService(Unused(), Unused(), store, TTLCache(ttl=300), settings=make_settings())
    service.cache.set(LATEST_KEY, compute_prices(two_hop_vaults(), {SBTC: BTC_PRICE}, make_settings(), now=1000.0))

    with TestClient(create_app(service, run_background=False)) as test_client:
        response = test_client.get("/health")
    assert response.json() == {"status": "ok", "lastSnapshot": 1000.0}

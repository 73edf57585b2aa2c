import httpx
import pytest

from pricegraph.errors import UpstreamError
from pricegraph.services.oracle import BtcOracle
from pricegraph.services.vault_loader import VaultLoader

from helpers import SBTC_TOKEN, TOKEN_A, token

VAULT_RECORD = {
    "contractId": "SP1TEST.pool-a-sbtc",
    "type": "POOL",
    "fee": 3000,
    "tokenA": token(TOKEN_A),
    "tokenB": SBTC_TOKEN,
    "reservesA": "1000000000",
    "reservesB": "500000",
}


def _client(handler, base_url="https://upstream.test"):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


@pytest.mark.asyncio
async def test_vault_loader_validates_records():
    def handler(request):
        assert request.url.path == "/vaults"
        return httpx.Response(200, json={"data": [VAULT_RECORD, {"contractId": "broken"}]})

    loader = VaultLoader("https://upstream.test", client=_client(handler))
    vaults, rejected = await loader.fetch_vaults()
    await loader.aclose()

    assert [v.contract_id for v in vaults] == ["SP1TEST.pool-a-sbtc"]
    assert rejected == 1


@pytest.mark.asyncio
async def test_vault_loader_accepts_bare_list():
    loader = VaultLoader("https://upstream.test", client=_client(lambda r: httpx.Response(200, json=[VAULT_RECORD])))
    vaults, rejected = await loader.fetch_vaults()
    assert len(vaults) == 1
    assert rejected == 0


@pytest.mark.asyncio
async def test_vault_loader_wraps_http_errors():
    loader = VaultLoader("https://upstream.test", client=_client(lambda r: httpx.Response(502, text="bad gateway")))
    with pytest.raises(UpstreamError) as exc_info:
        await loader.fetch_vaults()
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_vault_loader_rejects_unexpected_payload():
    loader = VaultLoader("https://upstream.test", client=_client(lambda r: httpx.Response(200, json={"data": "nope"})))
    with pytest.raises(UpstreamError):
        await loader.fetch_vaults()


@pytest.mark.asyncio
async def test_oracle_reads_btc_price():
    def handler(request):
        assert request.url.params["ids"] == "bitcoin"
        return httpx.Response(200, json={"bitcoin": {"usd": 65432.1}})

    oracle = BtcOracle("https://upstream.test", client=_client(handler))
    assert await oracle.fetch_btc_price() == 65432.1


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"bitcoin": {"usd": 0}}, {"bitcoin": {"usd": "n/a"}}])
async def test_oracle_rejects_bad_payloads(payload):
    oracle = BtcOracle("https://upstream.test", client=_client(lambda r: httpx.Response(200, json=payload)))
    with pytest.raises(UpstreamError):
        await oracle.fetch_btc_price()


@pytest.mark.asyncio
async def test_oracle_wraps_rate_limits():
    oracle = BtcOracle("https://upstream.test", client=_client(lambda r: httpx.Response(429)))
    with pytest.raises(UpstreamError) as exc_info:
        await oracle.fetch_btc_price()
    assert exc_info.value.status_code == 429

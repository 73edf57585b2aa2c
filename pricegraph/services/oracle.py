import logging
import math
from typing import Optional
import httpx
from pricegraph.errors import UpstreamError

logger = logging.getLogger(__name__)


class BtcOracle:
    """BTC/USD feed used as the sBTC anchor price."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=10.0,
            headers={"Accept": "application/json"}
        )

    async def fetch_btc_price(self) -> float:
        try:
            response = await self.client.get(
                "/simple/price",
                params={"ids": "bitcoin", "vs_currencies": "usd"}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(f"BTC oracle returned {e.response.status_code}", e.response.status_code) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"BTC oracle unreachable: {str(e)}") from e
        except ValueError as e:
            raise UpstreamError(f"BTC oracle returned invalid JSON: {str(e)}") from e

        try:
            price = float(data["bitcoin"]["usd"])
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Unexpected BTC oracle payload: {data}") from e
        if not math.isfinite(price) or price <= 0:
            raise UpstreamError(f"BTC oracle returned invalid price {price}")

        logger.debug(f"BTC/USD = {price}")
        return price

    async def aclose(self):
        await self.client.aclose()

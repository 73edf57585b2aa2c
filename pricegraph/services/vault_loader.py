import logging
from typing import List, Optional, Tuple
import httpx
from pricegraph.errors import UpstreamError
from pricegraph.models import Vault, parse_vaults

logger = logging.getLogger(__name__)


class VaultLoader:
    """Fetches the pool/vault snapshot from the vault API."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=30.0,
            headers={
                "Accept": "application/json",
                "User-Agent": "PriceGraph/1.0"
            }
        )

    async def fetch_vaults(self) -> Tuple[List[Vault], int]:
        """Fetch and validate every vault record.

        Raises UpstreamError when the API is unreachable or answers with
        something other than a vault list.
        """
        url = "/vaults"
        logger.debug(f"Fetching vaults from: {url}")
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error fetching vaults: {str(e)}\nResponse: {e.response.text}")
            raise UpstreamError(f"Vault API returned {e.response.status_code}", e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"Error fetching vaults: {str(e)}")
            raise UpstreamError(f"Vault API unreachable: {str(e)}") from e
        except ValueError as e:
            raise UpstreamError(f"Vault API returned invalid JSON: {str(e)}") from e

        records = data.get("data") if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise UpstreamError("Vault API response has no vault list")

        vaults, rejected = parse_vaults(records)
        logger.info(f"Loaded {len(vaults)} vaults ({rejected} rejected)")
        return vaults, rejected

    async def aclose(self):
        await self.client.aclose()

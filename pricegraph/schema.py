import logging
from typing import Annotated, List, Optional, Union
import strawberry
from strawberry.types import Info
from pricegraph.errors import PricingError, UpstreamError
from pricegraph.models import (
    IntrinsicDetail as IntrinsicDetailModel,
    PriceFailure,
    PricePath as PricePathModel,
    PriceResult,
)

logger = logging.getLogger(__name__)


@strawberry.type
class PricePath:
    tokens: List[str]
    pools: List[str]
    hops: int
    min_liquidity: float = strawberry.field(name="minLiquidity")
    total_liquidity: float = strawberry.field(name="totalLiquidity")
    reliability: float

    @classmethod
    def from_model(cls, path: PricePathModel) -> "PricePath":
        return cls(
            tokens=list(path.tokens),
            pools=list(path.pools),
            hops=path.hops,
            min_liquidity=path.min_liquidity,
            total_liquidity=path.total_liquidity,
            reliability=path.reliability
        )


@strawberry.type
class UnderlyingAmount:
    token_id: str = strawberry.field(name="tokenId")
    amount: float
    usd_value: float = strawberry.field(name="usdValue")


@strawberry.type
class IntrinsicDetail:
    method: str
    underlying: List[UnderlyingAmount]

    @classmethod
    def from_model(cls, detail: IntrinsicDetailModel) -> "IntrinsicDetail":
        return cls(
            method=detail.method,
            underlying=[
                UnderlyingAmount(token_id=u.token_id, amount=u.amount, usd_value=u.usd_value)
                for u in detail.underlying
            ]
        )


@strawberry.type
class PriceQuote:
    """A resolved USD price"""
    token_id: str = strawberry.field(name="tokenId")
    symbol: str
    usd_price: float = strawberry.field(name="usdPrice")
    sbtc_ratio: float = strawberry.field(name="sbtcRatio")
    confidence: float
    total_liquidity: float = strawberry.field(name="totalLiquidity")
    last_updated: float = strawberry.field(name="lastUpdated")
    source: str
    primary_path: Optional[PricePath] = strawberry.field(name="primaryPath")
    alternative_paths: List[PricePath] = strawberry.field(name="alternativePaths")
    intrinsic: Optional[IntrinsicDetail]
    market_deviation: Optional[float] = strawberry.field(name="marketDeviation")
    paths_used: Optional[int] = strawberry.field(name="pathsUsed")
    price_variation: Optional[float] = strawberry.field(name="priceVariation")

    @classmethod
    def from_model(cls, result: PriceResult) -> "PriceQuote":
        return cls(
            token_id=result.token_id,
            symbol=result.symbol,
            usd_price=result.usd_price,
            sbtc_ratio=result.sbtc_ratio,
            confidence=result.confidence,
            total_liquidity=result.total_liquidity,
            last_updated=result.last_updated,
            source=result.source,
            primary_path=PricePath.from_model(result.primary_path) if result.primary_path else None,
            alternative_paths=[PricePath.from_model(p) for p in result.alternative_paths],
            intrinsic=IntrinsicDetail.from_model(result.intrinsic) if result.intrinsic else None,
            market_deviation=result.market_deviation,
            paths_used=result.paths_used,
            price_variation=result.price_variation
        )


@strawberry.type
class PriceError:
    """A token whose price could not be resolved; never a zero price"""
    token_id: str = strawberry.field(name="tokenId")
    error: str
    message: str

    @classmethod
    def from_model(cls, failure: PriceFailure) -> "PriceError":
        return cls(token_id=failure.token_id, error=failure.error, message=failure.message)


TokenPrice = Annotated[Union[PriceQuote, PriceError], strawberry.union("TokenPrice")]


@strawberry.type
class PriceResponse:
    snapshot_timestamp: float = strawberry.field(name="snapshotTimestamp")
    stale: bool
    results: List[TokenPrice]


@strawberry.type
class SnapshotStats:
    last_snapshot: Optional[float] = strawberry.field(name="lastSnapshot")
    total_tokens: int = strawberry.field(name="totalTokens")
    priced: int
    failed: int
    skipped_pools: List[str] = strawberry.field(name="skippedPools")
    rejected_vaults: int = strawberry.field(name="rejectedVaults")


def _to_graphql(result: Union[PriceResult, PriceFailure]) -> Union[PriceQuote, PriceError]:
    if isinstance(result, PriceFailure):
        return PriceError.from_model(result)
    return PriceQuote.from_model(result)


@strawberry.type
class Query:
    @strawberry.field
    async def prices(
            self,
            info: Info,
            token_ids: List[str],
            include_paths: bool = False
    ) -> PriceResponse:
        price_service = info.context["price_service"]
        try:
            response = await price_service.get_prices(token_ids, include_paths=include_paths)
        except (PricingError, UpstreamError) as e:
            logger.error(f"Error in prices: {str(e)}")
            raise

        return PriceResponse(
            snapshot_timestamp=response.snapshot_timestamp,
            stale=response.stale,
            results=[_to_graphql(r) for r in response.results]
        )

    @strawberry.field
    async def snapshot_stats(self, info: Info) -> SnapshotStats:
        price_service = info.context["price_service"]
        stats = await price_service.stats()
        return SnapshotStats(
            last_snapshot=stats.get("last_snapshot"),
            total_tokens=stats.get("total_tokens", 0),
            priced=stats.get("priced", 0),
            failed=stats.get("failed", 0),
            skipped_pools=stats.get("skipped_pools", []),
            rejected_vaults=stats.get("rejected_vaults", 0)
        )


# Create the schema
schema = strawberry.Schema(query=Query)

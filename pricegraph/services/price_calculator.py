import logging
import math
import time
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple, Union
from pricegraph.errors import InvalidReserves, NoLiquidityPath, PricingError, TokenNotFound
from pricegraph.models import (
    IntrinsicDetail,
    PriceFailure,
    PricePath,
    PriceResult,
    UnderlyingAmount,
    Vault,
)
from pricegraph.services.graph_builder import PriceGraph, to_decimal_amount
from pricegraph.services.path_finder import PathFinder

logger = logging.getLogger(__name__)

# Redeemable assets are trusted more than any market path, but never fully
INTRINSIC_CONFIDENCE = 0.95


class PathQuote(NamedTuple):
    path: PricePath
    usd_price: float


class PriceCalculator:
    """
    Derives USD prices for tokens in one graph build.

    Anchors take their oracle price, LP tokens are valued by what they
    redeem for, subnet tokens inherit their base token price, stablecoins
    are worth $1 and everything else is priced through the best pool path
    to an anchor. Results are memoized for the lifetime of the calculator,
    which is one pricing pass.
    """

    def __init__(
            self,
            graph: PriceGraph,
            path_finder: PathFinder,
            anchor_prices: Dict[str, float],
            sbtc_token_id: str,
            stablecoin_symbols: Iterable[str] = (),
            apply_fees: bool = True,
            aggregate_paths: bool = False,
            outlier_threshold: float = 0.5,
            now: Optional[float] = None
    ):
        if sbtc_token_id not in anchor_prices:
            raise ValueError(f"Anchor prices must include {sbtc_token_id}")
        for anchor, price in anchor_prices.items():
            if not math.isfinite(price) or price <= 0:
                raise ValueError(f"Invalid anchor price for {anchor}: {price}")

        self.graph = graph
        self.path_finder = path_finder
        self.anchor_prices = dict(anchor_prices)
        self.sbtc_token_id = sbtc_token_id
        self.stablecoin_symbols = set(stablecoin_symbols)
        self.apply_fees = apply_fees
        self.aggregate_paths = aggregate_paths
        self.outlier_threshold = outlier_threshold
        self.now = time.time() if now is None else now
        self._results: Dict[str, Union[PriceResult, PriceFailure]] = {}
        self._in_progress: Set[str] = set()

    @property
    def sbtc_price(self) -> float:
        return self.anchor_prices[self.sbtc_token_id]

    def price(self, token_id: str) -> Union[PriceResult, PriceFailure]:
        """Price a token, returning a tagged failure instead of raising."""
        if token_id in self._results:
            return self._results[token_id]
        if token_id in self._in_progress:
            return PriceFailure(
                token_id=token_id,
                error="NO_LIQUIDITY_PATH",
                message=f"Circular valuation for {token_id}"
            )

        self._in_progress.add(token_id)
        try:
            result = self._price(token_id)
        except PricingError as e:
            logger.debug(f"Pricing failed for {token_id}: {e}")
            result = PriceFailure(token_id=token_id, error=e.code, message=str(e))
        finally:
            self._in_progress.discard(token_id)

        self._results[token_id] = result
        return result

    def _price(self, token_id: str) -> PriceResult:
        if token_id in self.anchor_prices:
            return self._anchor_price(token_id)

        vault = self.graph.vault(token_id)
        if vault is not None:
            return self._lp_price(vault)

        info = self.graph.token_info(token_id)
        if info is not None and info.base:
            return self._subnet_price(token_id, info.base)
        if info is not None and info.symbol in self.stablecoin_symbols:
            return self._stablecoin_price(token_id)

        return self.market_price(token_id)

    def _result(
            self,
            token_id: str,
            usd_price: float,
            confidence: float,
            source: str,
            symbol: Optional[str] = None,
            **extra
    ) -> PriceResult:
        if symbol is None:
            info = self.graph.token_info(token_id)
            symbol = info.symbol if info else ""
        total_liquidity = self.graph.token(token_id).total_liquidity if self.graph.has_token(token_id) else 0.0
        return PriceResult(
            token_id=token_id,
            symbol=symbol,
            usd_price=usd_price,
            sbtc_ratio=usd_price / self.sbtc_price,
            confidence=min(1.0, max(0.0, confidence)),
            total_liquidity=total_liquidity,
            last_updated=self.now,
            source=source,
            **extra
        )

    def _anchor_price(self, token_id: str) -> PriceResult:
        return self._result(token_id, self.anchor_prices[token_id], 1.0, "oracle")

    def _stablecoin_price(self, token_id: str) -> PriceResult:
        return self._result(
            token_id, 1.0, INTRINSIC_CONFIDENCE, "intrinsic",
            intrinsic=IntrinsicDetail(method="Fixed $1.00 redeemable value")
        )

    def _subnet_price(self, token_id: str, base_token_id: str) -> PriceResult:
        base = self.price(base_token_id)
        if isinstance(base, PriceFailure):
            raise NoLiquidityPath(
                f"Base token {base_token_id} of {token_id} has no price: {base.error}",
                token_id=token_id
            )
        return self._result(
            token_id, base.usd_price, base.confidence, "intrinsic",
            intrinsic=IntrinsicDetail(method=f"Inherits from mainnet base token: {base_token_id}")
        )

    # Market pricing

    def hop_rate(self, path: PricePath) -> float:
        """Units of the path's final token received per unit of its first token."""
        rate = 1.0
        for token_in, token_out, pool_id in zip(path.tokens, path.tokens[1:], path.pools):
            edge = self.graph.edge(token_in, token_out, pool_id)
            rate *= edge.reserve_of(token_out) / edge.reserve_of(token_in)
            if self.apply_fees:
                rate *= 1 - edge.fee_rate
        return rate

    def path_usd_price(self, path: PricePath) -> float:
        return self.hop_rate(path) * self.anchor_prices[path.tokens[-1]]

    def market_price(self, token_id: str) -> PriceResult:
        """Price a token through its most reliable pool path to an anchor.

        With path aggregation on, every ranked path contributes: paths more
        than ``outlier_threshold`` away from the median are dropped and the
        rest are averaged by reliability. Confidence is the primary path's
        reliability reduced by the spread of the kept prices.
        """
        route = self.path_finder.best_route(token_id, self.anchor_prices.keys())
        if not self.aggregate_paths:
            usd_price = self.path_usd_price(route.primary)
            if not math.isfinite(usd_price) or usd_price <= 0:
                raise InvalidReserves(f"Path for {token_id} produced price {usd_price}", token_id=token_id)
            return self._result(
                token_id, usd_price, route.primary.reliability, "market",
                primary_path=route.primary,
                alternative_paths=route.alternatives
            )

        quotes = self.path_quotes([route.primary, *route.alternatives])
        if not quotes:
            raise InvalidReserves(f"No path for {token_id} produced a usable price", token_id=token_id)
        usd_price, variation, kept = self.aggregate_quotes(quotes)
        primary = kept[0].path
        return self._result(
            token_id, usd_price, primary.reliability * max(0.0, 1 - variation), "market",
            primary_path=primary,
            alternative_paths=[quote.path for quote in kept[1:]],
            paths_used=len(kept),
            price_variation=variation
        )

    def path_quotes(self, paths: Iterable[PricePath]) -> List[PathQuote]:
        quotes = []
        for path in paths:
            usd_price = self.path_usd_price(path)
            if math.isfinite(usd_price) and usd_price > 0:
                quotes.append(PathQuote(path, usd_price))
            else:
                logger.debug(f"Discarding path {' -> '.join(path.tokens)}: price {usd_price}")
        return quotes

    def aggregate_quotes(self, quotes: List[PathQuote]) -> Tuple[float, float, List[PathQuote]]:
        """
        Combine per-path prices into one.

        Returns:
            Tuple of (weighted price, coefficient of variation, kept quotes).
            Kept quotes stay in path ranking order.
        """
        by_price = sorted(quote.usd_price for quote in quotes)
        median = by_price[len(by_price) // 2]
        kept = [q for q in quotes if abs(q.usd_price - median) / median <= self.outlier_threshold]

        weights = [q.path.reliability for q in kept]
        if sum(weights) <= 0:
            weights = [1.0] * len(kept)
        total = sum(weights)
        mean = sum(w * q.usd_price for w, q in zip(weights, kept)) / total
        variance = sum(w * (q.usd_price - mean) ** 2 for w, q in zip(weights, kept)) / total
        if len(kept) < len(quotes):
            logger.debug(f"Dropped {len(quotes) - len(kept)} outlier paths around median {median}")
        return mean, math.sqrt(variance) / mean, kept

    # Intrinsic LP pricing

    def quote_remove_liquidity(self, vault: Vault, amount: float) -> Tuple[float, float]:
        """
        Simulate burning LP tokens.

        Args:
            vault: The pool whose LP token is redeemed
            amount: LP token amount in decimal units

        Returns:
            Decimal amounts of token A and token B received
        """
        if amount <= 0:
            raise ValueError(f"LP amount must be positive, got {amount}")
        if vault.total_supply is None:
            raise InvalidReserves(f"Pool {vault.contract_id} has no LP supply", token_id=vault.contract_id)
        supply = to_decimal_amount(vault.total_supply, vault.decimals)
        reserve_a = to_decimal_amount(vault.reserves_a, vault.token_a.decimals)
        reserve_b = to_decimal_amount(vault.reserves_b, vault.token_b.decimals)
        if not (supply > 0 and reserve_a > 0 and reserve_b > 0):
            raise InvalidReserves(
                f"Pool {vault.contract_id} cannot be redeemed: supply={supply}, A={reserve_a}, B={reserve_b}",
                token_id=vault.contract_id
            )

        share = amount / supply
        return share * reserve_a, share * reserve_b

    def _underlying_prices(self, vault: Vault) -> Tuple[PriceResult, PriceResult]:
        prices = []
        for info in (vault.token_a, vault.token_b):
            result = self.price(info.contract_id)
            if isinstance(result, PriceFailure):
                raise NoLiquidityPath(
                    f"Underlying token {info.contract_id} of {vault.contract_id} has no price: {result.error}",
                    token_id=vault.contract_id
                )
            prices.append(result)
        return prices[0], prices[1]

    def redemption_value(self, vault: Vault, amount: float) -> float:
        """USD value of the reserves ``amount`` LP tokens redeem for."""
        price_a, price_b = self._underlying_prices(vault)
        dx, dy = self.quote_remove_liquidity(vault, amount)
        return dx * price_a.usd_price + dy * price_b.usd_price

    def reserve_ratio_value(self, vault: Vault) -> float:
        """USD value of one LP token from pool TVL over LP supply."""
        price_a, price_b = self._underlying_prices(vault)
        reserve_a = to_decimal_amount(vault.reserves_a, vault.token_a.decimals)
        reserve_b = to_decimal_amount(vault.reserves_b, vault.token_b.decimals)
        supply = to_decimal_amount(vault.total_supply or 0, vault.decimals)
        if supply <= 0:
            raise InvalidReserves(f"Pool {vault.contract_id} has no LP supply", token_id=vault.contract_id)
        return (reserve_a * price_a.usd_price + reserve_b * price_b.usd_price) / supply

    def validate_linearity(self, vault: Vault, amount: float, tolerance: float = 1e-4) -> bool:
        """Check value(amount) == amount * value(1), both by redemption and by reserve ratio."""
        unit = self.redemption_value(vault, 1.0)
        scaled = self.redemption_value(vault, amount)
        by_ratio = self.reserve_ratio_value(vault)
        return (
                math.isclose(scaled, amount * unit, rel_tol=tolerance)
                and math.isclose(unit, by_ratio, rel_tol=tolerance)
        )

    def intrinsic_value(self, vault: Vault, amount: float = 1.0) -> PriceResult:
        """Per-unit USD price of an LP token from its redeemable reserves."""
        if amount <= 0:
            raise ValueError(f"LP amount must be positive, got {amount}")
        price_a, price_b = self._underlying_prices(vault)
        dx, dy = self.quote_remove_liquidity(vault, amount)
        value_a = dx * price_a.usd_price
        value_b = dy * price_b.usd_price
        usd_price = (value_a + value_b) / amount

        logger.debug(
            f"LP intrinsic value {vault.contract_id}: {dx:.6f} {vault.token_a.symbol} + "
            f"{dy:.6f} {vault.token_b.symbol} = ${usd_price:.6f}"
        )
        return self._result(
            vault.contract_id,
            usd_price,
            INTRINSIC_CONFIDENCE * min(price_a.confidence, price_b.confidence),
            "intrinsic",
            symbol=vault.symbol,
            intrinsic=IntrinsicDetail(
                method="Remove liquidity quote of underlying assets",
                underlying=[
                    UnderlyingAmount(token_id=vault.token_a.contract_id, amount=dx, usd_value=value_a),
                    UnderlyingAmount(token_id=vault.token_b.contract_id, amount=dy, usd_value=value_b),
                ]
            )
        )

    def _lp_price(self, vault: Vault) -> PriceResult:
        result = self.intrinsic_value(vault)
        if not self.graph.has_token(vault.contract_id):
            return result

        # The LP token also trades in a pool; report how far the market is off
        try:
            market = self.market_price(vault.contract_id)
        except (NoLiquidityPath, TokenNotFound, InvalidReserves):
            return result
        deviation = (market.usd_price - result.usd_price) / result.usd_price
        return result.model_copy(update={"market_deviation": deviation})

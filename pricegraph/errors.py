from __future__ import annotations

from typing import Optional


class PricingError(RuntimeError):
    """Base class for failures while deriving a token price."""

    code = "PRICING_ERROR"

    def __init__(self, message: str, token_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.token_id = token_id


class TokenNotFound(PricingError):
    code = "TOKEN_NOT_FOUND"


class NoLiquidityPath(PricingError):
    code = "NO_LIQUIDITY_PATH"


class InvalidReserves(PricingError):
    code = "INVALID_RESERVES"


class StaleSnapshot(PricingError):
    code = "STALE_SNAPSHOT"

    def __init__(self, message: str, age_seconds: float) -> None:
        super().__init__(message)
        self.age_seconds = age_seconds


class UpstreamError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

import logging
from decimal import Decimal
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

# Pool fees are expressed in parts per million
FEE_SCALE = 1_000_000

VaultType = Literal["POOL", "SUBLINK", "ENERGY", "SUBNET"]
PriceSource = Literal["market", "intrinsic", "oracle"]
FailureCode = Literal["TOKEN_NOT_FOUND", "NO_LIQUIDITY_PATH", "INVALID_RESERVES"]


class TokenInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    contract_id: str = Field(alias="contractId", min_length=1)
    symbol: str = ""
    name: str = ""
    decimals: int = Field(ge=0, le=18)
    type: Optional[str] = None
    base: Optional[str] = None  # mainnet token wrapped by a subnet token


class Vault(BaseModel):
    """A liquidity pool (or other vault) record from the snapshot provider."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    contract_id: str = Field(alias="contractId", min_length=1)
    type: VaultType = "POOL"
    protocol: str = "CHARISMA"
    symbol: str = ""
    decimals: int = Field(default=6, ge=0, le=18)
    fee: int = Field(default=0, ge=0, lt=FEE_SCALE)
    token_a: TokenInfo = Field(alias="tokenA")
    token_b: TokenInfo = Field(alias="tokenB")
    reserves_a: Decimal = Field(alias="reservesA")
    reserves_b: Decimal = Field(alias="reservesB")
    total_supply: Optional[Decimal] = Field(default=None, alias="totalSupply")

    @model_validator(mode="after")
    def _check_distinct_tokens(self) -> "Vault":
        if self.token_a.contract_id == self.token_b.contract_id:
            raise ValueError("vault tokens must be distinct")
        return self

    @property
    def fee_rate(self) -> float:
        return self.fee / FEE_SCALE


def parse_vaults(records: Iterable[Any]) -> Tuple[List[Vault], int]:
    """Validate raw vault records, dropping the malformed ones.

    Returns the valid vaults and the number of rejected records.
    """
    vaults: List[Vault] = []
    rejected = 0
    for record in records:
        try:
            vaults.append(Vault.model_validate(record))
        except ValidationError as e:
            rejected += 1
            contract_id = record.get("contractId") if isinstance(record, dict) else None
            logger.warning(f"Rejected vault record {contract_id}: {e.error_count()} validation error(s)")
    return vaults, rejected


class TokenNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    contract_id: str
    symbol: str
    decimals: int
    total_liquidity: float
    pool_count: int


class PoolEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    pool_id: str
    token_a: str
    token_b: str
    reserve_a: float  # decimal-adjusted
    reserve_b: float
    fee_rate: float
    liquidity: float
    last_updated: float

    def reserve_of(self, token_id: str) -> float:
        if token_id == self.token_a:
            return self.reserve_a
        if token_id == self.token_b:
            return self.reserve_b
        raise KeyError(token_id)

    def other(self, token_id: str) -> str:
        return self.token_b if token_id == self.token_a else self.token_a


class PricePath(BaseModel):
    model_config = ConfigDict(frozen=True)

    tokens: List[str]
    pools: List[str]
    hops: int
    min_liquidity: float
    total_liquidity: float
    reliability: float


class UnderlyingAmount(BaseModel):
    token_id: str
    amount: float
    usd_value: float


class IntrinsicDetail(BaseModel):
    method: str
    underlying: List[UnderlyingAmount] = []


class PriceResult(BaseModel):
    status: Literal["ok"] = "ok"
    token_id: str
    symbol: str = ""
    usd_price: float
    sbtc_ratio: float
    confidence: float = Field(ge=0, le=1)
    total_liquidity: float = 0.0
    last_updated: float
    source: PriceSource
    primary_path: Optional[PricePath] = None
    alternative_paths: List[PricePath] = []
    intrinsic: Optional[IntrinsicDetail] = None
    market_deviation: Optional[float] = None
    paths_used: Optional[int] = None
    price_variation: Optional[float] = None


class PriceFailure(BaseModel):
    status: Literal["error"] = "error"
    token_id: str
    error: FailureCode
    message: str = ""


PriceOutcome = Annotated[Union[PriceResult, PriceFailure], Field(discriminator="status")]


class SnapshotMetadata(BaseModel):
    total_tokens: int = 0
    priced: int = 0
    failed: int = 0
    source_counts: Dict[str, int] = {}
    skipped_pools: List[str] = []
    rejected_vaults: int = 0
    calculation_ms: float = 0.0


class PriceSnapshot(BaseModel):
    timestamp: float
    anchor_prices: Dict[str, float]
    prices: Dict[str, PriceResult]
    failures: Dict[str, PriceFailure] = {}
    metadata: SnapshotMetadata = SnapshotMetadata()


class PriceResponse(BaseModel):
    snapshot_timestamp: float
    stale: bool = False
    results: List[PriceOutcome]

import logging
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# sBTC on Stacks mainnet, priced by the BTC oracle
SBTC_CONTRACT_ID = "SM3VDXK3WZZSA84XXFKAFAF15NNZX32CTSG82JFQ4.sbtc-token"

# Longest route the path finder will ever enumerate
MAX_HOPS_CEILING = 9


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_ignore_empty=True, extra="ignore"
    )
    VAULT_API_URL: str = "https://invest.charisma.rocks/api/v1"
    ORACLE_API_URL: str = "https://api.coingecko.com/api/v3"
    REDIS_URL: str = "redis://localhost:6379"
    ANCHOR_TOKEN_ID: str = SBTC_CONTRACT_ID
    MAX_HOPS: int = Field(default=4, ge=1, le=MAX_HOPS_CEILING)
    MAX_ALTERNATIVE_PATHS: int = Field(default=5, ge=0)
    LIQUIDITY_SCALE: float = Field(default=1000.0, gt=0)
    HOP_PENALTY_EXPONENT: float = Field(default=0.5, ge=0)
    APPLY_FEES: bool = True
    AGGREGATE_PATHS: bool = False
    OUTLIER_THRESHOLD: float = Field(default=0.5, gt=0)
    STABLECOIN_SYMBOLS: List[str] = ["USDC", "USDT", "DAI", "BUSD", "sUSDT", "sUSDC", "aeUSDC"]
    UPDATE_INTERVAL: int = 300  # 5 minutes
    SNAPSHOT_TTL: int = 3600
    STALE_AFTER: int = 600
    MAX_STALE: int = 3600
    CACHE_TTL: int = 30
    LOG_LEVEL: str = "INFO"


settings = Settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

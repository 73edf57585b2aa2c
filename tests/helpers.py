from typing import Optional

from pricegraph.config import SBTC_CONTRACT_ID, Settings
from pricegraph.models import Vault

SBTC = SBTC_CONTRACT_ID
BTC_PRICE = 100_000.0

TOKEN_A = "SP1TEST.token-a"
TOKEN_B = "SP1TEST.token-b"
TOKEN_C = "SP1TEST.token-c"


def token(contract_id: str, symbol: Optional[str] = None, decimals: int = 6, **extra) -> dict:
    return {
        "contractId": contract_id,
        "symbol": symbol or contract_id.split(".")[-1].upper(),
        "name": contract_id,
        "decimals": decimals,
        **extra,
    }


SBTC_TOKEN = token(SBTC, "sBTC", 8)


def vault(
    contract_id: str,
    token_a: dict,
    token_b: dict,
    reserves_a: int,
    reserves_b: int,
    fee: int = 0,
    type: str = "POOL",
    total_supply: Optional[int] = None,
    decimals: int = 6,
) -> Vault:
    record = {
        "contractId": contract_id,
        "type": type,
        "symbol": contract_id.split(".")[-1].upper(),
        "decimals": decimals,
        "fee": fee,
        "tokenA": token_a,
        "tokenB": token_b,
        "reservesA": reserves_a,
        "reservesB": reserves_b,
    }
    if total_supply is not None:
        record["totalSupply"] = total_supply
    return Vault.model_validate(record)


def make_settings(**overrides) -> Settings:
    values = {"APPLY_FEES": False}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def two_hop_vaults(fee: int = 0):
    """A -> B -> sBTC: 1 A = 0.5 B, 1 B = 0.000005 sBTC, so A = $0.25 and B = $0.50."""
    return [
        vault(
            "SP1TEST.pool-a-b",
            token(TOKEN_A),
            token(TOKEN_B),
            1_000_000_000_000,
            500_000_000_000,
            fee=fee,
            total_supply=707_106_000_000,
        ),
        vault(
            "SP1TEST.pool-b-sbtc",
            token(TOKEN_B),
            SBTC_TOKEN,
            2_000_000_000_000,
            1_000_000_000,
            fee=fee,
        ),
    ]

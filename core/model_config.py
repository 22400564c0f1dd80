"""
Configuration for the protection market model.

Every tunable of the model (interest rates, venue fees, reward emissions,
block mining behaviour) can be overridden through environment variables or a
local .env file. Constructors fall back to these values when no explicit
parameter is passed.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from model_logging import get_logger

load_dotenv()

logger = get_logger("model_config")

# Fixed-point scale used for rates, prices and collateral factors
MANTISSA = 10**18


@dataclass
class MarketParams:
    """Parameters applied to a newly deployed market."""

    borrow_rate_per_block: int = 20_000_000_000  # ~4.3% APR at 6570 blocks/day
    collateral_factor: int = 75 * MANTISSA // 100


@dataclass
class VenueParams:
    """Parameters for the liquidity pool and reward gauge."""

    pool_fee_bps: int = 4
    reward_rate_per_block: int = 10**16


@dataclass
class ChainParams:
    """Behaviour of the simulated execution environment."""

    auto_mine: bool = True


class Config:
    """Global configuration handler."""

    @staticmethod
    def get_env(key: str, default: Optional[str] = None) -> Optional[str]:
        """Get environment variable with fallback to default."""
        return os.getenv(key, default)

    @staticmethod
    def get_env_int(key: str, default: int) -> int:
        """Get environment variable as integer with fallback to default."""
        value = os.getenv(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer value for %s: %s. Using default %s", key, value, default)
            return default

    @staticmethod
    def get_env_bool(key: str, default: bool) -> bool:
        """Get environment variable as boolean with fallback to default."""
        value = os.getenv(key)
        if value is None:
            return default
        return value.lower() in ("true", "yes", "1")

    @staticmethod
    def get_market_params() -> MarketParams:
        defaults = MarketParams()
        return MarketParams(
            borrow_rate_per_block=Config.get_env_int("BORROW_RATE_PER_BLOCK", defaults.borrow_rate_per_block),
            collateral_factor=Config.get_env_int("COLLATERAL_FACTOR", defaults.collateral_factor),
        )

    @staticmethod
    def get_venue_params() -> VenueParams:
        defaults = VenueParams()
        return VenueParams(
            pool_fee_bps=Config.get_env_int("POOL_FEE_BPS", defaults.pool_fee_bps),
            reward_rate_per_block=Config.get_env_int("REWARD_RATE_PER_BLOCK", defaults.reward_rate_per_block),
        )

    @staticmethod
    def get_chain_params() -> ChainParams:
        return ChainParams(auto_mine=Config.get_env_bool("AUTO_MINE", ChainParams().auto_mine))


import os
from dataclasses import dataclass, field
from typing import Dict


def _tier_overrides(prefix: str) -> Dict[str, int]:
    # TIER_BUYER_CRASH_INSURANCE_BPS=7500 -> {"crash_insurance": 7500}
    out = {}
    for key, val in os.environ.items():
        if key.startswith(prefix) and key.endswith("_BPS"):
            name = key[len(prefix):-len("_BPS")].lower()
            out[name] = int(val)
    return out


@dataclass
class Settings:
    ENV: str = os.getenv("ENV", "dev")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    PORT: int = int(os.getenv("PORT", "5002"))

    # oracle: "coingecko" | "http" | "static"
    ORACLE_PROVIDER: str = os.getenv("ORACLE_PROVIDER", "coingecko")
    ORACLE_API_BASE: str = os.getenv("ORACLE_API_BASE", "http://localhost:5003")
    ORACLE_ASSET_ID: str = os.getenv("ORACLE_ASSET_ID", "bitcoin")
    ORACLE_VS_CURRENCY: str = os.getenv("ORACLE_VS_CURRENCY", "usd")
    ORACLE_TIMEOUT_SECONDS: float = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "3"))
    ORACLE_RETRIES: int = int(os.getenv("ORACLE_RETRIES", "1"))
    STATIC_PRICE: str = os.getenv("STATIC_PRICE", "50000")
    STATIC_VOLATILITY: float = float(os.getenv("STATIC_VOLATILITY", "0.6"))
    VOLATILITY_WINDOW_DAYS: int = int(os.getenv("VOLATILITY_WINDOW_DAYS", "30"))

    # fail-fast deadline for every oracle / parameter / vault call
    COLLABORATOR_TIMEOUT_SECONDS: float = float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "5"))

    # total notional (ScaledAmount, sats) the vault can reserve
    VAULT_CAPACITY: int = int(os.getenv("VAULT_CAPACITY", str(100 * 10 ** 8)))

    MONGODB_URI: str = os.getenv("MONGODB_URI", "")
    QUOTE_TTL_SECONDS: int = int(os.getenv("QUOTE_TTL_SECONDS", str(24 * 60 * 60)))

    # quote pricing (Black-Scholes plus loadings)
    QUOTE_RISK_FREE_RATE: float = float(os.getenv("QUOTE_RISK_FREE_RATE", "0.02"))
    QUOTE_BASE_RATE: float = float(os.getenv("QUOTE_BASE_RATE", "0.01"))
    QUOTE_VOLATILITY_MULTIPLIER: float = float(os.getenv("QUOTE_VOLATILITY_MULTIPLIER", "1.5"))
    QUOTE_DURATION_FACTOR: float = float(os.getenv("QUOTE_DURATION_FACTOR", "0.5"))

    # premium bounds model
    PREMIUM_TIME_VALUE_BPS: int = int(os.getenv("PREMIUM_TIME_VALUE_BPS", "500"))
    PREMIUM_MIN_FACTOR: str = os.getenv("PREMIUM_MIN_FACTOR", "0.5")
    PREMIUM_MAX_FACTOR: str = os.getenv("PREMIUM_MAX_FACTOR", "2.0")
    TIER_BUYER_BPS: Dict[str, int] = field(default_factory=lambda: _tier_overrides("TIER_BUYER_"))
    TIER_PROVIDER_BPS: Dict[str, int] = field(default_factory=lambda: _tier_overrides("TIER_PROVIDER_"))

settings = Settings()

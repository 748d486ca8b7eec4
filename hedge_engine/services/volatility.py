# hedge_engine/services/volatility.py

import math
import statistics
from typing import List, Optional, Protocol

import requests
from pycoingecko import CoinGeckoAPI

from ..domain.errors import PriceUnavailable
from ..utils.config import Settings, settings
from ..utils.http import get
from ..utils.logging import get_logger

log = get_logger(__name__)


class VolatilitySource(Protocol):
    def annualized_volatility(self) -> float:
        ...


def realized_volatility(prices: List[float]) -> float:
    """
    Sample standard deviation of daily log returns, annualized by sqrt(365).
    Needs at least three positive prices.
    """
    usable = [float(p) for p in prices if p and float(p) > 0]
    if len(usable) < 3:
        raise ValueError(f"need at least 3 positive prices, got {len(usable)}")
    returns = [math.log(b / a) for a, b in zip(usable, usable[1:])]
    return statistics.stdev(returns) * math.sqrt(365)


def _usable(vol: float, source: str) -> float:
    if not math.isfinite(vol) or vol <= 0:
        raise PriceUnavailable(f"{source} produced an unusable volatility {vol!r}")
    return vol


class CoinGeckoVolatility:
    """Realized volatility over the last `window_days` daily closes."""

    def __init__(self, asset_id: str = "bitcoin", vs_currency: str = "usd", window_days: int = 30,
                 timeout: float = 3.0, client: Optional[CoinGeckoAPI] = None):
        self.asset_id = asset_id
        self.vs_currency = vs_currency
        self.window_days = window_days
        self.cg = client or CoinGeckoAPI()
        self.cg.request_timeout = timeout

    def annualized_volatility(self) -> float:
        try:
            data = self.cg.get_coin_market_chart_by_id(
                id=self.asset_id, vs_currency=self.vs_currency, days=self.window_days, interval="daily"
            )
        except (requests.RequestException, ValueError) as e:
            raise PriceUnavailable(f"coingecko history lookup failed: {e}") from e
        prices = [p[1] for p in (data or {}).get("prices") or []]
        try:
            vol = realized_volatility(prices)
        except ValueError as e:
            raise PriceUnavailable(f"coingecko history too short for {self.asset_id}: {e}") from e
        log.info(f"volatility asset={self.asset_id} window={self.window_days}d sigma={vol:.4f}")
        return _usable(vol, "coingecko")


class HttpVolatility:
    """
    Internal market data service:
      GET {base}/volatility?asset=<id>&days=<n>  -> {"volatility": 0.55}
    """

    def __init__(self, base_url: str, asset_id: str = "bitcoin", window_days: int = 30,
                 timeout: float = 3.0, retries: int = 1):
        self.base = base_url.rstrip("/")
        self.asset_id = asset_id
        self.window_days = window_days
        self.timeout = timeout
        self.retries = retries

    def annualized_volatility(self) -> float:
        try:
            body = get(
                f"{self.base}/volatility",
                timeout=self.timeout,
                retries=self.retries,
                params={"asset": self.asset_id, "days": self.window_days},
            )
        except (requests.RequestException, ValueError) as e:
            raise PriceUnavailable(f"volatility service unavailable: {e}") from e
        raw = body.get("volatility") if isinstance(body, dict) else None
        try:
            vol = float(raw)
        except (TypeError, ValueError):
            raise PriceUnavailable(f"volatility service returned {raw!r}")
        return _usable(vol, "volatility service")


class StaticVolatility:
    def __init__(self, volatility: float):
        self.volatility = float(volatility)

    def annualized_volatility(self) -> float:
        return _usable(self.volatility, "static volatility")


def build_volatility_source(cfg: Settings = settings) -> VolatilitySource:
    provider = cfg.ORACLE_PROVIDER
    if provider == "coingecko":
        return CoinGeckoVolatility(cfg.ORACLE_ASSET_ID, cfg.ORACLE_VS_CURRENCY,
                                   cfg.VOLATILITY_WINDOW_DAYS, cfg.ORACLE_TIMEOUT_SECONDS)
    if provider == "http":
        return HttpVolatility(cfg.ORACLE_API_BASE, cfg.ORACLE_ASSET_ID, cfg.VOLATILITY_WINDOW_DAYS,
                              cfg.ORACLE_TIMEOUT_SECONDS, cfg.ORACLE_RETRIES)
    if provider == "static":
        return StaticVolatility(cfg.STATIC_VOLATILITY)
    raise ValueError(f"Unsupported ORACLE_PROVIDER: {provider}")

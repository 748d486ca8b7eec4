# hedge_engine/services/price_oracle.py

import threading
from typing import Any, Dict, Optional, Protocol

import requests
from pycoingecko import CoinGeckoAPI

from ..domain.errors import PriceUnavailable, ScaleMismatch
from ..utils.config import Settings, settings
from ..utils.fixed_point import to_scaled
from ..utils.http import get
from ..utils.logging import get_logger

log = get_logger(__name__)

# how far before the expiration marker a sample may lie and still count as "the" price
PRICE_AT_LOOKBACK_SECONDS = 6 * 60 * 60


class PriceOracle(Protocol):
    def current_price(self) -> int:
        ...

    def price_at(self, expiration: int) -> int:
        ...


def _scaled_price(raw: Any, source: str) -> int:
    try:
        price = to_scaled(raw)
    except ScaleMismatch as e:
        raise PriceUnavailable(f"{source} returned an unusable price {raw!r}") from e
    if price == 0:
        raise PriceUnavailable(f"{source} returned a zero price")
    return price


class CoinGeckoOracle:
    """
    Spot and historical prices from CoinGecko. The expiration marker is a
    Unix timestamp; the last sample at or before it is the settlement price.
    """

    def __init__(self, asset_id: str = "bitcoin", vs_currency: str = "usd",
                 timeout: float = 3.0, client: Optional[CoinGeckoAPI] = None):
        self.asset_id = asset_id
        self.vs_currency = vs_currency
        self.cg = client or CoinGeckoAPI()
        self.cg.request_timeout = timeout

    def current_price(self) -> int:
        try:
            data = self.cg.get_price(ids=self.asset_id, vs_currencies=self.vs_currency)
        except (requests.RequestException, ValueError) as e:
            raise PriceUnavailable(f"coingecko price lookup failed: {e}") from e
        raw = (data or {}).get(self.asset_id, {}).get(self.vs_currency)
        if raw is None:
            raise PriceUnavailable(f"coingecko has no {self.vs_currency} price for {self.asset_id}")
        return _scaled_price(raw, "coingecko")

    def price_at(self, expiration: int) -> int:
        try:
            data = self.cg.get_coin_market_chart_range_by_id(
                id=self.asset_id,
                vs_currency=self.vs_currency,
                from_timestamp=expiration - PRICE_AT_LOOKBACK_SECONDS,
                to_timestamp=expiration,
            )
        except (requests.RequestException, ValueError) as e:
            raise PriceUnavailable(f"coingecko history lookup failed: {e}") from e

        # "prices": [[ms_timestamp, price], ...] in ascending time order
        samples = [p for ts, p in (data or {}).get("prices") or [] if ts / 1000 <= expiration]
        if not samples:
            raise PriceUnavailable(f"coingecko has no {self.asset_id} price at or before {expiration}")
        return _scaled_price(samples[-1], "coingecko")


class HttpOracle:
    """
    Internal price service:
      GET {base}/prices/current        -> {"price": "50000.12"}
      GET {base}/prices/at/<marker>    -> {"price": "48000.00"}
    """

    def __init__(self, base_url: str, timeout: float = 3.0, retries: int = 1):
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries

    def _fetch(self, path: str) -> int:
        url = f"{self.base}{path}"
        try:
            body = get(url, timeout=self.timeout, retries=self.retries)
        except (requests.RequestException, ValueError) as e:
            raise PriceUnavailable(f"price service unavailable: {e}") from e
        raw = body.get("price") if isinstance(body, dict) else None
        if raw is None:
            raise PriceUnavailable(f"price service returned no price for {path}")
        return _scaled_price(raw, "price service")

    def current_price(self) -> int:
        return self._fetch("/prices/current")

    def price_at(self, expiration: int) -> int:
        return self._fetch(f"/prices/at/{int(expiration)}")


class StaticOracle:
    """Fixed prices for local runs and tests. Prices are ScaledAmount."""

    def __init__(self, price: int, history: Optional[Dict[int, int]] = None):
        self._lock = threading.Lock()
        self._price = price
        self._history = dict(history or {})

    def set_price(self, price: int) -> None:
        with self._lock:
            self._price = price

    def set_price_at(self, expiration: int, price: int) -> None:
        with self._lock:
            self._history[expiration] = price

    def current_price(self) -> int:
        with self._lock:
            return self._price

    def price_at(self, expiration: int) -> int:
        # unrecorded markers settle at the current fixed price
        with self._lock:
            return self._history.get(expiration, self._price)


def build_oracle(cfg: Settings = settings) -> PriceOracle:
    provider = cfg.ORACLE_PROVIDER
    log.info(f"price oracle provider={provider}")
    if provider == "coingecko":
        return CoinGeckoOracle(cfg.ORACLE_ASSET_ID, cfg.ORACLE_VS_CURRENCY, cfg.ORACLE_TIMEOUT_SECONDS)
    if provider == "http":
        return HttpOracle(cfg.ORACLE_API_BASE, cfg.ORACLE_TIMEOUT_SECONDS, cfg.ORACLE_RETRIES)
    if provider == "static":
        return StaticOracle(to_scaled(cfg.STATIC_PRICE))
    raise ValueError(f"Unsupported ORACLE_PROVIDER: {provider}")

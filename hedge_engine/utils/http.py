
import time
from typing import Any, Dict, Optional

import requests
from .logging import get_logger

log = get_logger(__name__)

def get(url: str, timeout: float = 10, retries: int = 2, params: Optional[Dict[str, Any]] = None):
    for attempt in range(retries+1):
        try:
            resp = requests.get(url, params=params, timeout=timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            log.warning(f"http.get failed attempt={attempt} url={url} err={e}")
            if attempt == retries:
                raise
            time.sleep(0.2 * (attempt+1))

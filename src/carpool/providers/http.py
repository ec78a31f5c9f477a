from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.exceptions import ConnectionError, HTTPError, ReadTimeout

log = logging.getLogger(__name__)


def _transient(err: Exception) -> bool:
    if isinstance(err, (ReadTimeout, ConnectionError)):
        return True
    if isinstance(err, HTTPError) and err.response is not None:
        return err.response.status_code == 429 or err.response.status_code >= 500
    return False


@dataclass
class HTTPClient:
    user_agent: str = "carpool-trips/0.1"
    timeout_s: int = 10
    tries: int = 3
    backoff_s: float = 0.5

    def __post_init__(self) -> None:
        self.s = requests.Session()
        self.s.headers.update(
            {
                "User-Agent": self.user_agent,
                "Accept": "application/json, text/plain;q=0.9, */*;q=0.8",
            }
        )

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        timeout_s: Optional[int] = None,
    ) -> Dict[str, Any]:
        timeout = timeout_s if timeout_s is not None else self.timeout_s
        last_err: Optional[Exception] = None
        for attempt in range(self.tries):
            try:
                r = self.s.get(url, params=params, timeout=timeout)
                r.raise_for_status()
                return r.json()
            except (ReadTimeout, ConnectionError, HTTPError) as e:
                if not _transient(e):
                    raise
                last_err = e
                log.warning("GET %s failed (attempt %d/%d): %s", url, attempt + 1, self.tries, e)
                if attempt < self.tries - 1:
                    time.sleep(self.backoff_s * (2**attempt))
        raise last_err if last_err else RuntimeError("HTTP get_json failed")

"""Source connector contract and shared HTTP plumbing."""

import threading
import time
from datetime import date
from typing import Any, Callable, Literal, Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel, Field

from research_pipeline.errors import ConnectorError
from research_pipeline.models.entities import Item

logger = structlog.get_logger(__name__)


class SearchOptions(BaseModel):
    max_results: int = Field(default=20, ge=1)
    min_date: Optional[date] = None
    max_date: Optional[date] = None
    sort_by: Optional[Literal["relevance", "date"]] = None


class SourceConnector(Protocol):
    """A search provider normalized to Items."""

    name: str

    def search(self, query: str, options: SearchOptions) -> list[Item]:
        ...


class RateLimiter:
    """Enforces a minimum interval between calls, across threads.

    The lock is held while sleeping so waiting callers queue up behind it.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def wait(self) -> None:
        with self._lock:
            now = self._clock()
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    now = self._clock()
            self._last_call = now


class HttpConnector:
    """Base for the bundled httpx connectors.

    Subclasses set ``name`` and ``base_url``; search providers also implement
    ``search``. Clients of the same host can share one ``limiter``.
    """

    name = "http"
    base_url = ""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        min_interval: float = 0.0,
        timeout: float = 30.0,
        limiter: Optional[RateLimiter] = None,
    ):
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self.limiter = limiter or RateLimiter(min_interval)

    def _get(self, path: str, params: dict[str, Any]) -> httpx.Response:
        """Rate-limited GET against ``base_url``.

        Raises:
            ConnectorError: On transport errors and non-2xx responses.
        """
        self.limiter.wait()
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ConnectorError(self.name, f"timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ConnectorError(self.name, f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ConnectorError(self.name, f"request failed: {e}") from e
        return response

    def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        response = self._get(path, params)
        try:
            return response.json()
        except ValueError as e:
            raise ConnectorError(self.name, f"invalid JSON: {response.text[:200]}") from e

    def close(self) -> None:
        self._client.close()

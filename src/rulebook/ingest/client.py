"""Taxonomy client — JSON fetches from the regulator's handbook API with retry.

Retry policy:
- Up to ``max_attempts`` attempts per call (default 3); budgets are per call,
  there is no circuit breaker across calls.
- After failed attempt *n* the client sleeps ``base_delay * n`` seconds
  (0.8 s, 1.6 s, ...) before trying again.
- Transport failures (URLError / HTTPError for non-2xx, timeouts, dropped
  connections) are retried; exhaustion raises FetchError chained to the last
  observed error.
- A body that is not valid JSON raises MalformedResponseError immediately.

The opener and the sleep function are injectable so tests never touch the
network or the clock.
"""

from __future__ import annotations

import http.client
import json
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Mapping
from typing import Any

from rulebook.errors import FetchError, MalformedResponseError

DEFAULT_API_BASE = "https://api-handbook.fca.org.uk"
DEFAULT_INDEX_PATH = "/Handbook/GetAllHandbook"
DEFAULT_PROVISIONS_PATH = "/Handbook/GetAllHandBookProvisionsSortedOrderByChapter/{key}"

_USER_AGENT = "rulebook/0.1"
_TIMEOUT = 60  # seconds
_MAX_ATTEMPTS = 3
_BASE_DELAY = 0.8  # seconds

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (OSError, http.client.HTTPException)


class TaxonomyClient:
    """Fetch JSON documents from the taxonomy API.

    Args:
        base_url: API root, e.g. ``https://api-handbook.fca.org.uk``.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempt ceiling per call (>= 1).
        base_delay: Backoff unit in seconds; delay after attempt n is n × base_delay.
        index_path: Path of the full taxonomy index.
        provisions_path: Path template of a chapter's provisions (``{key}`` placeholder).
        opener: Object with ``open(request, timeout=...)`` (defaults to a urllib opener).
        sleep: Called with the delay in seconds between attempts.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        *,
        timeout: float = _TIMEOUT,
        max_attempts: int = _MAX_ATTEMPTS,
        base_delay: float = _BASE_DELAY,
        index_path: str = DEFAULT_INDEX_PATH,
        provisions_path: str = DEFAULT_PROVISIONS_PATH,
        opener: Any | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.index_path = index_path
        self.provisions_path = provisions_path
        self._opener = opener or urllib.request.build_opener()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def fetch_index(self) -> list:
        """Return the ``headers`` list of the full taxonomy index."""
        data = _unwrap(self.fetch(self.index_path))
        headers = data.get("headers") if isinstance(data, dict) else None
        return headers if isinstance(headers, list) else []

    def fetch_chapter_provisions(self, chapter_key: str) -> list[dict]:
        """Return the raw provision dicts of one chapter (empty list if none)."""
        path = self.provisions_path.format(key=urllib.parse.quote(chapter_key, safe=""))
        data = _unwrap(self.fetch(path))
        provisions = data.get("provisions") if isinstance(data, dict) else None
        if not isinstance(provisions, list):
            return []
        return [p for p in provisions if isinstance(p, dict)]

    # ------------------------------------------------------------------
    # Fetch with retry
    # ------------------------------------------------------------------

    def fetch(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        """GET *path* and decode the JSON body, retrying transport failures.

        Raises:
            FetchError: All attempts failed at the transport level.
            MalformedResponseError: The response body is not valid JSON.
        """
        url = self._build_url(path, params)
        request = urllib.request.Request(
            url,
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json, text/plain, */*"},
        )

        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self._opener.open(request, timeout=self.timeout) as response:
                    body = response.read()
            except _TRANSIENT_ERRORS as exc:
                # HTTPError carries the open response body.
                if isinstance(exc, urllib.error.HTTPError):
                    exc.close()
                last_error = exc
                if attempt < self.max_attempts:
                    self._sleep(self.base_delay * attempt)
                continue
            return _decode(body, url)

        raise FetchError(
            f"GET {url} failed after {self.max_attempts} attempt(s): {last_error}",
            url=url,
            attempts=self.max_attempts,
        ) from last_error

    def _build_url(self, path: str, params: Mapping[str, Any] | None) -> str:
        url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            query = urllib.parse.urlencode(
                {k: v for k, v in params.items() if v is not None}, doseq=True
            )
            if query:
                url = f"{url}?{query}"
        return url


def _decode(body: bytes, url: str) -> Any:
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedResponseError(f"Response from {url} is not valid JSON: {exc}") from exc


def _unwrap(data: Any) -> Any:
    """Strip the API's ``{"Result": {...}}`` envelope when present."""
    if isinstance(data, dict) and isinstance(data.get("Result"), dict):
        return data["Result"]
    return data

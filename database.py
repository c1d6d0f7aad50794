"""
REST client for the realtime database that holds sensor readings and citizen reports.

The store is a flat JSON tree: every location is addressed as `{base}/{path}.json`
and answers GET/PUT/POST/PATCH/DELETE. It has no query language beyond key
ordering and tail slices, and no transactions; conditional writes use ETags.
"""
import logging
import time
from typing import Any, Optional

import requests

from config import Config
from errors import ConflictError, UpstreamError

logger = logging.getLogger(__name__)


class RealtimeStore:
    """Thin wrapper around a requests.Session bound to one database URL."""

    def __init__(
        self,
        base_url: str = Config.STORE_URL,
        auth: Optional[str] = Config.STORE_AUTH,
        timeout: float = Config.REQUEST_TIMEOUT,
        max_retries: int = Config.READ_RETRIES,
        retry_delay: float = Config.RETRY_BASE_DELAY,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.strip('/')}.json"

    # ----------------------------
    # Low-level request handling
    # ----------------------------

    def _request(
        self,
        method: str,
        path: str,
        params=None,
        json=None,
        headers=None,
        timeout: Optional[float] = None,
        raise_for_status: bool = True,
    ) -> requests.Response:
        query = dict(params or {})
        if self.auth:
            query["auth"] = self.auth
        timeout = self.timeout if timeout is None else timeout

        logger.debug("%s %s", method, path)
        try:
            response = self.session.request(
                method,
                self.url(path),
                params=query or None,
                json=json,
                headers=headers,
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise UpstreamError(f"{method} {path} timed out after {timeout:g}s") from e
        except requests.RequestException as e:
            raise UpstreamError(f"{method} {path} failed: {e}") from e

        if response.status_code == 412:
            raise ConflictError(f"{method} {path} rejected: location changed", status=412)
        if raise_for_status and not response.ok:
            raise self._status_error(method, path, response)
        return response

    @staticmethod
    def _status_error(method: str, path: str, response: requests.Response) -> UpstreamError:
        return UpstreamError(
            f"{method} {path} failed with status {response.status_code}: {response.text[:200]}",
            status=response.status_code,
        )

    @staticmethod
    def _is_json(response: requests.Response) -> bool:
        return "application/json" in (response.headers.get("content-type") or "")

    @staticmethod
    def _decode(response: requests.Response, method: str, path: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"{method} {path} returned a non-JSON payload") from e

    def _read(self, path: str, params=None, retry: bool = False, headers=None):
        """
        GET a location, backing off while the store answers with non-JSON pages.

        A throttled store answers with an HTML page (usually 429 or 503) instead of
        JSON; those are retried. A JSON error body fails at once. All attempts and
        the waits between them share one `timeout` budget.
        """
        attempts = self.max_retries if retry else 1
        deadline = self._clock() + self.timeout

        for attempt in range(attempts):
            timeout = None
            if attempt:
                timeout = min(self.timeout, deadline - self._clock())
            response = self._request("GET", path, params=params, headers=headers,
                                     timeout=timeout, raise_for_status=False)
            if self._is_json(response):
                try:
                    data = response.json()
                except ValueError:
                    pass
                else:
                    if not response.ok:
                        raise self._status_error("GET", path, response)
                    return data, response

            if attempt == attempts - 1:
                break
            delay = self.retry_delay * (2 ** attempt)
            if self._clock() + delay >= deadline:
                logger.warning("Non-JSON response from %s and no time left to retry", path)
                break
            logger.warning(
                "Non-JSON response from %s (status %d, likely rate limited), retrying in %.1fs",
                path, response.status_code, delay,
            )
            self._sleep(delay)

        raise UpstreamError(
            f"GET {path} returned a non-JSON payload with status {response.status_code} (likely rate limited)",
            status=None if response.ok else response.status_code,
        )

    # ----------------------------
    # Public operations
    # ----------------------------

    def get(self, path: str, params=None, retry: bool = False) -> Any:
        data, _ = self._read(path, params=params, retry=retry)
        return data

    def tail(self, path: str, count: int = 1) -> Any:
        """
        Return the last `count` children of a collection, ordered by key.

        Retries throttled answers, but gives up once `timeout` seconds have passed
        in total, counting the waits.
        """
        return self.get(path, params={"orderBy": '"$key"', "limitToLast": count}, retry=True)

    def get_with_etag(self, path: str) -> tuple[Any, Optional[str]]:
        data, response = self._read(path, headers={"X-Firebase-ETag": "true"})
        return data, response.headers.get("ETag")

    def post(self, path: str, data: dict) -> str:
        """Append under a store-generated key and return that key."""
        response = self._request("POST", path, json=data)
        body = self._decode(response, "POST", path)
        if not isinstance(body, dict) or "name" not in body:
            raise UpstreamError(f"POST {path} did not return a generated key")
        return body["name"]

    def put(self, path: str, data: Any, if_match: Optional[str] = None) -> Any:
        headers = {"if-match": if_match} if if_match else None
        response = self._request("PUT", path, json=data, headers=headers)
        return self._decode(response, "PUT", path)

    def patch(self, path: str, data: dict) -> Any:
        response = self._request("PATCH", path, json=data)
        return self._decode(response, "PATCH", path)

    def delete(self, path: str) -> None:
        self._request("DELETE", path)

    def ping(self) -> bool:
        """Cheap reachability check: a shallow read of the root."""
        self.get("", params={"shallow": "true"})
        return True

    def close(self):
        self.session.close()

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any

import requests
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GRAPHQL_URL = f"{GITHUB_API_URL}/graphql"
USER_AGENT = "coderabbit-analyzer"

PER_PAGE = 100
# GitHub's search API never returns more than 1,000 results for a query
SEARCH_RESULT_LIMIT = 1000
MAX_RETRIES = 3
REQUEST_TIMEOUT = 30


class GitHubAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthRequiredError(GitHubAPIError):
    pass


class NotFoundError(GitHubAPIError):
    pass


class RateLimitExceededError(GitHubAPIError):
    def __init__(self, message: str, reset_at: datetime | None = None):
        super().__init__(message, status_code=403)
        self.reset_at = reset_at


class TransientNetworkError(GitHubAPIError):
    pass


class SearchError(GitHubAPIError):
    pass


class _RetryableResponse(Exception):
    """Raised inside the retry loop for responses worth another attempt."""


async def _backoff_sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


class GitHubFetcher:
    """Thin async wrapper around the GitHub REST and GraphQL APIs.

    Requests go through ``requests`` on a worker thread so that many of them
    can be in flight at once from a single event loop.
    """

    def __init__(self, token: str | None = None, retries: int = MAX_RETRIES):
        self.token = token
        self.retries = retries
        self.rate_limit_remaining: int | None = None
        self.rate_limit_limit: int | None = None

        if self.token:
            logger.info("GitHub token provided: 5,000 requests/hour available.")
        else:
            logger.warning(
                "No GitHub token found! Using unauthenticated requests (60 requests/hour). "
                "Set GITHUB_TOKEN for the 5,000/hour limit."
            )

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @staticmethod
    def _header_int(response: requests.Response, name: str) -> int | None:
        raw = response.headers.get(name)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.debug(f"Ignoring malformed {name} header: {raw!r}")
            return None

    def _update_rate_limit(self, response: requests.Response) -> None:
        remaining = self._header_int(response, "X-RateLimit-Remaining")
        limit = self._header_int(response, "X-RateLimit-Limit")
        if remaining is not None:
            self.rate_limit_remaining = remaining
        if limit is not None:
            self.rate_limit_limit = limit

    def _rate_limit_error(self, response: requests.Response) -> RateLimitExceededError:
        auth_status = "Authenticated" if self.authenticated else "Unauthenticated"
        expected_limit = "5,000" if self.authenticated else "60"
        message = f"GitHub API rate limit exceeded ({auth_status}, limit: {expected_limit}/hour)."

        reset_at = None
        reset_ts = self._header_int(response, "X-RateLimit-Reset")
        if reset_ts is not None:
            reset_at = datetime.fromtimestamp(reset_ts, tz=timezone.utc)
            minutes = max(0, math.ceil((reset_ts - time.time()) / 60))
            message += f" Limit resets in {minutes} minutes (at {reset_at.strftime('%H:%M:%S')} UTC)."
        if not self.authenticated:
            message += " No token was provided."
        message += " Try again later or reduce your date range."
        return RateLimitExceededError(message, reset_at=reset_at)

    def _check_response(self, response: requests.Response, url: str) -> Any:
        status = response.status_code
        if status == 401:
            raise AuthRequiredError(
                "Not authenticated with GitHub. Check that your token is valid.", status_code=401
            )
        if status == 403:
            if response.headers.get("X-RateLimit-Remaining") == "0":
                raise self._rate_limit_error(response)
            raise GitHubAPIError(
                "GitHub API access forbidden. Your token may lack access to this repository.",
                status_code=403,
            )
        if status == 404:
            raise NotFoundError(f"GitHub resource not found: {url}", status_code=404)
        if status == 429 or status >= 500:
            raise _RetryableResponse(f"GitHub API error: {status} for {url}")
        if status >= 400:
            raise GitHubAPIError(f"GitHub API error: {status} for {url}", status_code=status)

        try:
            return response.json()
        except ValueError as e:
            raise _RetryableResponse(f"Invalid JSON from {url}: {e}") from e

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        send = requests.get if method == "GET" else requests.post

        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                f"Request to {url} failed ({retry_state.outcome.exception()}), retrying in "
                f"{retry_state.next_action.sleep:.0f}s ({retry_state.attempt_number}/{self.retries})..."
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_incrementing(start=1, increment=1),
            retry=retry_if_exception_type((requests.RequestException, _RetryableResponse)),
            before_sleep=log_retry,
            sleep=_backoff_sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await asyncio.to_thread(
                        send, url, headers=self._headers(), timeout=REQUEST_TIMEOUT, **kwargs
                    )
                    self._update_rate_limit(response)
                    if attempt.retry_state.attempt_number == 1:
                        logger.debug(
                            f"GitHub API rate limit: {self.rate_limit_remaining}/{self.rate_limit_limit} remaining"
                        )
                    return self._check_response(response, url)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise TransientNetworkError(
                f"Request to {url} failed after {self.retries} attempts: {last_error}"
            ) from last_error

    async def fetch(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """GET a single URL and return the decoded JSON body."""
        return await self._request("GET", url, params=params)

    async def fetch_all_pages(self, url: str, params: dict[str, Any] | None = None) -> list[Any]:
        """Download every page of a listing.

        Handles both plain list responses and search responses, which wrap
        their results in ``items`` and report a ``total_count``.
        """
        results: list[Any] = []
        page = 1

        while True:
            page_params = dict(params or {})
            page_params.update({"per_page": PER_PAGE, "page": page})
            data = await self.fetch(url, params=page_params)

            max_pages = None
            if isinstance(data, list):
                items = data
            elif isinstance(data, dict) and isinstance(data.get("items"), list):
                items = data["items"]
                if data.get("total_count") is not None:
                    max_pages = math.ceil(min(data["total_count"], SEARCH_RESULT_LIMIT) / PER_PAGE)
            else:
                items = []

            if not items:
                break
            results.extend(items)

            if max_pages is not None:
                if page >= max_pages:
                    break
            elif len(items) < PER_PAGE:
                break
            page += 1

        return results

    async def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        response_json = await self._request(
            "POST", GRAPHQL_URL, json={"query": query, "variables": variables}
        )
        if not isinstance(response_json, dict):
            raise GitHubAPIError("Unexpected GraphQL response from GitHub.")
        if response_json.get("errors"):
            raise GitHubAPIError(f"GraphQL errors: {response_json['errors']}")
        return response_json.get("data") or {}

"""Client for the remote archive catalog (the chess.com public API)."""

from dataclasses import dataclass
from typing import List
from urllib.parse import quote

import requests

from .errors import ProfileNotFound, UpstreamUnavailable
from .logger import RequestContext, StructuredLogger
from .retry import RetryError, exponential_backoff, should_retry_http_status
from .schema import CHESS_DOT_COM


class RetryableStatus(Exception):
    """The source answered with a status worth retrying (429, 5xx)."""

    def __init__(self, response):
        super().__init__(f"retryable status {response.status_code}")
        self.response = response


@dataclass(frozen=True)
class Profile:
    username: str
    remote_user_id: str


@exponential_backoff(
    max_retries=3,
    base_delay=1.0,
    exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, RetryableStatus),
)
def _fetch_with_retry(url: str, timeout: float):
    """Fetch URL with automatic retry on transient errors."""
    resp = requests.get(url, timeout=timeout, headers={"Accept": "application/json"})
    if should_retry_http_status(resp.status_code):
        raise RetryableStatus(resp)
    return resp


class RemoteCatalogClient:
    """Looks up a user's identity and archive list on the remote source."""

    def __init__(
        self,
        base_url: str,
        logger: StructuredLogger,
        timeout: float = 15,
        platform: str = CHESS_DOT_COM,
    ):
        self.base_url = base_url.rstrip("/")
        self.logger = logger
        self.timeout = timeout
        self.platform = platform

    def fetch_profile(self, username: str, ctx: RequestContext) -> Profile:
        """
        Raises:
            ProfileNotFound: The source answered 404
            UpstreamUnavailable: Any other failure
        """
        url = f"{self.base_url}/pub/player/{quote(username, safe='')}"
        self.logger.info("Requesting catalog for profile", ctx, url=url)
        resp = self._get(url, ctx)

        if resp.status_code == 404:
            self.logger.error("Profile not found on catalog", ctx, url=url, responseBody=resp.text[:500])
            raise ProfileNotFound(username, self.platform)
        if resp.status_code != 200:
            self.logger.error(
                "Unexpected status code from catalog", ctx, url=url, statusCode=resp.status_code
            )
            raise UpstreamUnavailable(f"Catalog answered {resp.status_code} for profile {username}")

        payload = self._json(resp, url, ctx)
        player_id = payload.get("player_id") if isinstance(payload, dict) else None
        if player_id is None or str(player_id).strip() == "":
            self.logger.error("Profile has no player id", ctx, url=url)
            raise UpstreamUnavailable(f"Catalog profile for {username} carries no player id")

        self.logger.info("Profile found", ctx, remoteUserId=str(player_id))
        return Profile(username=username, remote_user_id=str(player_id))

    def fetch_archives(self, username: str, ctx: RequestContext) -> List[str]:
        """Archive ids in the order the source lists them."""
        url = f"{self.base_url}/pub/player/{quote(username, safe='')}/games/archives"
        self.logger.info("Requesting catalog for archives", ctx, url=url)
        resp = self._get(url, ctx)

        if resp.status_code != 200:
            self.logger.error(
                "Unexpected status code from catalog", ctx, url=url, statusCode=resp.status_code
            )
            raise UpstreamUnavailable(f"Catalog answered {resp.status_code} for archives of {username}")

        payload = self._json(resp, url, ctx)
        archives = payload.get("archives") if isinstance(payload, dict) else None
        if not isinstance(archives, list) or not all(isinstance(a, str) for a in archives):
            self.logger.error("Archive list has an unexpected shape", ctx, url=url)
            raise UpstreamUnavailable(f"Catalog archive list for {username} is malformed")

        self.logger.info("Archives found on catalog", ctx, existingArchivesCount=len(archives))
        return archives

    def _get(self, url: str, ctx: RequestContext):
        self.logger.record_catalog_call()
        try:
            return _fetch_with_retry(url, self.timeout)
        except RetryError as e:
            cause = e.__cause__
            if isinstance(cause, RetryableStatus):
                self.logger.error(
                    "Catalog kept answering with a retryable status",
                    ctx,
                    url=url,
                    statusCode=cause.response.status_code,
                )
                raise UpstreamUnavailable(f"Catalog answered {cause.response.status_code}: {url}") from e
            self.logger.warning("Catalog request timed out or could not connect", ctx, url=url)
            raise UpstreamUnavailable(f"Catalog request failed after retries: {url}") from e
        except requests.exceptions.RequestException as e:
            self.logger.error("Catalog request error", ctx, url=url, error=str(e))
            raise UpstreamUnavailable(f"Catalog request error: {e}") from e

    def _json(self, resp, url: str, ctx: RequestContext):
        try:
            return resp.json()
        except ValueError as e:
            self.logger.error("Impossible to decode the catalog response", ctx, url=url, error=str(e))
            raise UpstreamUnavailable(f"Catalog response is not JSON: {url}") from e

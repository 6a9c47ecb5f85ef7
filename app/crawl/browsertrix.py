"""
Browsertrix crawl service client.

Authenticates with a bearer token obtained from the JWT login endpoint. The
token is cached per client instance; a request answered with 401 refreshes
the token once and is retried once before the error is surfaced.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from app.crawl.base import CrawlClient, CrawlServiceError
from app.models import CrawlHandle, CrawlOutcome

logger = logging.getLogger(__name__)

# Profile ids come from the Browsertrix profiles listing for our org
BROWSER_PROFILES = {
    "facebook": "b1cd3192-a554-41e1-9509-0cbff3b3df16",
}

FAILED_STATES = {
    "failed",
    "canceled",
    "stopped_by_user",
    "stopped_quota_reached",
    "skipped_storage_quota_reached",
    "skipped_time_quota_reached",
}


def build_crawl_config(url: str, profile: str | None = None) -> dict[str, Any]:
    """Single-page crawl of ``url``, started immediately."""
    return {
        "jobType": "custom",
        "name": "",
        "description": None,
        "scale": 1,
        "profileid": BROWSER_PROFILES.get(profile, "") if profile else "",
        "runNow": True,
        "schedule": "",
        "crawlTimeout": 0,
        "maxCrawlSize": 1_000_000_000,
        "tags": [],
        "autoAddCollections": [],
        "crawlerChannel": "default",
        "proxyId": None,
        "config": {
            "seeds": [{"url": url, "scopeType": "page"}],
            "scopeType": "page",
            "extraHops": 0,
            "useSitemap": False,
            "failOnFailedSeed": False,
            "behaviorTimeout": None,
            "pageLoadTimeout": None,
            "pageExtraDelay": None,
            "postLoadDelay": 120,
            "userAgent": None,
            "limit": None,
            "lang": "en",
            "exclude": [],
            "behaviors": "autoscroll,autoplay,autofetch,siteSpecific",
        },
    }


class TokenCache:
    """Bearer token shared by every call made through one client.

    Reads are lock free. Refreshes are serialised: a caller holding a stale
    token waits for the lock and reuses the token another caller already
    fetched instead of logging in again.
    """

    def __init__(self) -> None:
        self._token = ""
        self._lock = asyncio.Lock()

    @property
    def token(self) -> str:
        return self._token

    async def refresh(self, stale: str, login: Callable[[], Awaitable[str]]) -> str:
        async with self._lock:
            if self._token and self._token != stale:
                return self._token
            self._token = await login()
            return self._token


class BrowsertrixClient(CrawlClient):
    name = "browsertrix"

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        org_id: str,
        *,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.org_id = org_id
        self._username = username
        self._password = password
        self._tokens = TokenCache()
        self._client = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _org_url(self, path: str) -> str:
        return f"{self.base}/orgs/{self.org_id}/{path.lstrip('/')}"

    async def _login(self) -> str:
        logger.info("Logging into Browsertrix as %s", self._username)
        res = await self._client.post(
            f"{self.base}/auth/jwt/login",
            data={"username": self._username, "password": self._password},
        )
        res.raise_for_status()
        token = res.json().get("access_token")
        if not token:
            raise CrawlServiceError("Browsertrix login returned no access_token")
        return token

    async def _send(self, method: str, url: str, token: str, **kw) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        return await self._client.request(method, url, headers=headers, **kw)

    async def _request(self, method: str, url: str, **kw) -> httpx.Response:
        try:
            token = self._tokens.token
            if not token:
                token = await self._tokens.refresh(token, self._login)
            res = await self._send(method, url, token, **kw)
            if res.status_code == httpx.codes.UNAUTHORIZED:
                logger.info("Got 401 from Browsertrix, reauthenticating")
                token = await self._tokens.refresh(token, self._login)
                res = await self._send(method, url, token, **kw)
            res.raise_for_status()
        except httpx.HTTPError as exc:
            raise CrawlServiceError(f"{method} {url} failed: {exc}") from exc
        return res

    @staticmethod
    def _json(res: httpx.Response) -> dict[str, Any]:
        try:
            return res.json()
        except ValueError as exc:
            raise CrawlServiceError(f"Invalid JSON from Browsertrix: {exc}") from exc

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        await self._tokens.refresh(self._tokens.token, self._login)

    async def create(self, url: str, profile: str | None = None) -> CrawlHandle:
        res = await self._request("POST", self._org_url("crawlconfigs/"), json=build_crawl_config(url, profile))
        payload = self._json(res)
        crawl_id, job_run_id = payload.get("id"), payload.get("run_now_job")
        if not crawl_id or not job_run_id:
            raise CrawlServiceError(f"Unexpected create response: {payload}")
        return CrawlHandle(crawl_id=str(crawl_id), job_run_id=str(job_run_id))

    async def status(self, handle: CrawlHandle) -> CrawlOutcome:
        res = await self._request("GET", self._org_url(f"crawlconfigs/{handle.crawl_id}"))
        state = (self._json(res).get("lastCrawlState") or "").lower()
        if state == "complete":
            return CrawlOutcome.COMPLETE
        if state in FAILED_STATES:
            return CrawlOutcome.FAILED
        return CrawlOutcome.PENDING

    async def fetch(self, handle: CrawlHandle) -> bytes:
        res = await self._request(
            "GET",
            self._org_url(f"crawls/{handle.job_run_id}/download"),
            params={"prefer_single_wacz": "true"},
        )
        if not res.content:
            raise CrawlServiceError(f"Empty WACZ download for crawl {handle.job_run_id}")
        return res.content

    async def replay_url(self, job_run_id: str) -> str:
        res = await self._request("GET", self._org_url(f"crawls/{job_run_id}/replay.json"))
        resources = self._json(res).get("resources") or []
        if not resources:
            raise CrawlServiceError(f"No WACZ resources for crawl {job_run_id}")
        return resources[0]["path"]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["BrowsertrixClient", "TokenCache", "build_crawl_config", "BROWSER_PROFILES"]

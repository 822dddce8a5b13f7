from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Dict, Mapping, Optional, Union

from playwright.async_api import APIRequestContext, APIResponse, async_playwright
from playwright.async_api import Error as PlaywrightError

from .errors import HttpError

LOG = logging.getLogger("mangareader.http")

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124 Safari/537.36"
)
IMAGE_ACCEPT = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"
DEFAULT_TIMEOUT_MS = 90_000
DEFAULT_RETRIES = 2
RETRY_BASE_MS = 250
RETRY_BACKOFF = 1.8

Params = Mapping[str, Union[str, float, bool]]


def _retryable(status: int) -> bool:
    return status == 429 or status >= 500


class HttpClient:
    """GET helpers over a Playwright request context."""

    def __init__(
        self,
        request: APIRequestContext,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        retries: int = DEFAULT_RETRIES,
    ):
        self.request = request
        self.timeout_ms = timeout_ms
        self.retries = max(0, retries)

    async def _get(
        self,
        url: str,
        accept: str,
        referer: Optional[str] = None,
        params: Optional[Params] = None,
    ) -> APIResponse:
        if not url.startswith(("http://", "https://")):
            raise HttpError(f"Invalid url: {url}")
        headers: Dict[str, str] = {"Accept": accept, "User-Agent": USER_AGENT}
        if referer:
            headers["Referer"] = referer

        last_error = HttpError("Request failed")
        for attempt in range(1, self.retries + 2):
            try:
                resp = await self.request.get(
                    url, headers=headers, params=params, timeout=self.timeout_ms
                )
            except PlaywrightError as exc:
                last_error = HttpError(f"Request error: {exc}")
            else:
                if resp.ok:
                    return resp
                last_error = HttpError.response_not_ok(resp.status)
                if not _retryable(resp.status):
                    raise last_error
            if attempt <= self.retries:
                LOG.debug("GET %s failed (attempt %d): %s", url, attempt, last_error)
                await asyncio.sleep((RETRY_BASE_MS / 1000.0) * (RETRY_BACKOFF ** (attempt - 1)))
        raise last_error

    async def get_bytes(self, url: str, referer: Optional[str] = None) -> bytes:
        resp = await self._get(url, IMAGE_ACCEPT, referer=referer)
        return await resp.body()

    async def get_text(self, url: str, referer: Optional[str] = None) -> str:
        resp = await self._get(url, "text/html,application/xhtml+xml,*/*;q=0.8", referer=referer)
        return await resp.text()

    async def get_json(
        self,
        url: str,
        params: Optional[Params] = None,
        referer: Optional[str] = None,
    ) -> dict:
        resp = await self._get(url, "application/json", referer=referer, params=params)
        try:
            data = await resp.json()
        except ValueError as exc:
            raise HttpError(f"Could not parse response: {exc}") from exc
        if not isinstance(data, dict):
            raise HttpError("Could not parse response")
        return data


@contextlib.asynccontextmanager
async def open_http_client(
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    retries: int = DEFAULT_RETRIES,
) -> AsyncIterator[HttpClient]:
    async with async_playwright() as p:
        request = await p.request.new_context(user_agent=USER_AGENT)
        try:
            yield HttpClient(request, timeout_ms=timeout_ms, retries=retries)
        finally:
            await request.dispose()

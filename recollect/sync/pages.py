"""Fetch pages and extract their readable text for backfill indexing."""

import logging
from typing import Any, Optional

import httpx
import trafilatura

from recollect.utils.text import collapse_whitespace

logger = logging.getLogger(__name__)

MAX_PAGE_CHARS = 20000
HTTP_MAX_CONNECTIONS = 10
HTTP_KEEPALIVE_TIMEOUT = 30.0


class PageFetcher:
    """Anonymous page fetcher (no cookies) with a pooled async client."""

    def __init__(self, timeout: float = 15.0) -> None:
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            limits = httpx.Limits(
                max_connections=HTTP_MAX_CONNECTIONS,
                max_keepalive_connections=HTTP_MAX_CONNECTIONS,
                keepalive_expiry=HTTP_KEEPALIVE_TIMEOUT,
            )
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                limits=limits,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_text(self, url: str) -> str:
        """Return the page's main text, or "" when it cannot be had.

        Non-HTML responses, HTTP errors and extraction failures all yield "".
        """
        try:
            response = await self._get_client().get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Fetch failed for %s: %s", url, e)
            return ""
        content_type = response.headers.get("content-type", "")
        if not response.is_success or "text/html" not in content_type:
            return ""
        return extract_text(response.text)


def extract_text(html: str) -> str:
    """Readable text of an HTML document, whitespace-collapsed and capped."""
    if not html:
        return ""
    content: Any = None
    try:
        content = trafilatura.extract(
            html,
            include_comments=False,
            include_tables=False,
        )
    except (ValueError, RuntimeError) as e:
        logger.debug("Text extraction failed: %s", e)
    return collapse_whitespace(content or "")[:MAX_PAGE_CHARS]

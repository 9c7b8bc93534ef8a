"""
Content Fetcher - main-content extraction through the Jina Reader API.

GET {JINA_READER_URL}/<page url> returns the page's readable text without
navigation or footer. The API answers with JSON when asked, but plain
text/markdown is accepted too.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from django.conf import settings

from auditor.exceptions import ContentFetchError

logger = logging.getLogger(__name__)

USER_AGENT = "Content-Quality-Auditor/1.0"
DEFAULT_TITLE = "Untitled"


@dataclass
class FetchedContent:
    """Extracted page text."""

    title: str
    content: str


class ContentFetcher:
    """Async HTTP client for the Jina Reader API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the content fetcher.

        Args:
            base_url: Reader endpoint (defaults to settings.JINA_READER_URL)
            api_key: Optional API key for higher rate limits (defaults to settings.JINA_API_KEY)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (
            base_url or getattr(settings, "JINA_READER_URL", "https://r.jina.ai")
        ).rstrip("/")
        self.api_key = api_key if api_key is not None else getattr(settings, "JINA_API_KEY", "")
        if timeout is None:
            timeout = float(getattr(settings, "AUDITOR_REQUEST_TIMEOUT", 30))
        self.timeout = timeout
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    async def fetch(self, url: str) -> FetchedContent:
        """
        Extract the title and main content of a page.

        Args:
            url: Page URL (passed to the reader unencoded)

        Returns:
            FetchedContent with stripped title and content

        Raises:
            ContentFetchError: Transport failure, non-2xx status or empty content
        """
        reader_url = f"{self.base_url}/{url}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(reader_url, headers=self._get_headers())
        except httpx.TimeoutException as e:
            raise ContentFetchError(f"Crawling failed for {url}: timeout after {self.timeout}s ({e})")
        except httpx.HTTPError as e:
            raise ContentFetchError(f"Crawling failed for {url}: {e}")

        if not response.is_success:
            raise ContentFetchError(
                f"Crawling failed for {url}: reader error ({response.status_code}): "
                f"{response.text[:500]}"
            )

        title, content = self._parse_body(response.text)
        logger.debug(f"Reader returned {len(content)} chars for {url}")

        if not content.strip():
            raise ContentFetchError(f"Crawling failed for {url}: no content extracted from page")

        return FetchedContent(title=title.strip() or DEFAULT_TITLE, content=content.strip())

    @staticmethod
    def _parse_body(raw: str):
        """Split a reader response into (title, content)."""
        try:
            data: Any = json.loads(raw)
        except ValueError:
            # Plain text/markdown response
            return DEFAULT_TITLE, raw

        if not isinstance(data, dict):
            return DEFAULT_TITLE, raw

        body = data.get("data") if isinstance(data.get("data"), dict) else data
        title = body.get("title") or DEFAULT_TITLE
        content = body.get("content") or body.get("markdown") or body.get("text") or ""
        return str(title), str(content)


def get_content_fetcher() -> ContentFetcher:
    """
    Factory function to get a configured ContentFetcher.

    Returns:
        ContentFetcher using the JINA_* settings
    """
    return ContentFetcher()

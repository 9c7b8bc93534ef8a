"""
Sitemap Resolver Service.

Turns a sitemap URL into the ordered list of page URLs an audit will cover.

Features:
- Standard sitemap.xml (urlset) and sitemap index files
- Recursive resolution of nested sitemap indexes
- Gzipped sitemaps (.xml.gz or gzip magic bytes)
- Duplicate URLs dropped, first occurrence order kept
"""

import gzip
import logging
from typing import List, Optional, Set
from xml.etree import ElementTree as ET

import httpx
from django.conf import settings

from auditor.exceptions import EmptySitemapError, SitemapParseError

logger = logging.getLogger(__name__)


# XML namespaces for sitemaps
SITEMAP_NS = {"sm": "http://www.sitemaps.org/schemas/sitemap/0.9"}

USER_AGENT = "Content-Quality-Auditor/1.0"


class SitemapResolver:
    """
    Resolver for XML sitemaps and sitemap indexes.

    resolve() follows sitemap indexes depth-first, so page URLs come back
    in document order of the child sitemaps.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_size_bytes: int = 50 * 1024 * 1024,  # 50MB
        max_depth: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the sitemap resolver.

        Args:
            timeout: HTTP request timeout in seconds
            max_size_bytes: Maximum sitemap size to download
            max_depth: Maximum sitemap index nesting
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if timeout is None:
            timeout = float(getattr(settings, "AUDITOR_REQUEST_TIMEOUT", 30))
        self.timeout = timeout
        self.max_size_bytes = max_size_bytes
        self.max_depth = max_depth
        self._transport = transport

    async def resolve(self, url: str) -> List[str]:
        """
        Resolve a sitemap (or sitemap index) to its page URLs.

        Args:
            url: URL of the sitemap

        Returns:
            Page URLs in sitemap order, without duplicates

        Raises:
            SitemapParseError: Fetch failure, malformed XML or no URLs at all
        """
        logger.info(f"Resolving sitemap: {url}")

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            urls = await self._resolve(client, url, depth=0, visited=set())

        unique = list(dict.fromkeys(urls))
        if not unique:
            raise EmptySitemapError(f"No URLs found in sitemap: {url}")

        logger.info(f"Resolved {len(unique)} URLs from {url}")
        return unique

    async def _resolve(
        self,
        client: httpx.AsyncClient,
        url: str,
        depth: int,
        visited: Set[str],
    ) -> List[str]:
        if url in visited:
            logger.warning(f"Skipping already visited sitemap: {url}")
            return []
        visited.add(url)

        content = await self._fetch_sitemap_content(client, url)
        root = self._parse_xml(content)
        root_tag = root.tag.lower()

        if "sitemapindex" in root_tag:
            if depth >= self.max_depth:
                raise SitemapParseError(f"Sitemap index nesting too deep at {url}")

            children = self._locs(root, "sitemap")
            logger.info(f"Sitemap index {url} lists {len(children)} child sitemaps")

            urls: List[str] = []
            for child in children:
                urls.extend(await self._resolve(client, child, depth + 1, visited))
            return urls

        if "urlset" in root_tag:
            return self._locs(root, "url")

        raise SitemapParseError(f"Unknown sitemap root element: {root.tag}")

    async def _fetch_sitemap_content(self, client: httpx.AsyncClient, url: str) -> bytes:
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/xml, text/xml, application/gzip, */*",
        }

        try:
            response = await client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            raise SitemapParseError(f"Timeout fetching sitemap {url}: {e}")
        except httpx.HTTPError as e:
            raise SitemapParseError(f"Failed to fetch sitemap {url}: {e}")

        if response.status_code >= 400:
            raise SitemapParseError(
                f"Failed to fetch sitemap {url}: HTTP {response.status_code} {response.reason_phrase}"
            )

        content_length = response.headers.get("content-length")
        if content_length and int(content_length) > self.max_size_bytes:
            raise SitemapParseError(
                f"Sitemap too large: {content_length} bytes exceeds {self.max_size_bytes}"
            )

        content = response.content
        if url.endswith(".gz") or self._is_gzipped(content):
            try:
                content = gzip.decompress(content)
            except (OSError, EOFError) as e:
                raise SitemapParseError(f"Failed to decompress gzipped sitemap {url}: {e}")

        return content

    @staticmethod
    def _is_gzipped(content: bytes) -> bool:
        """Check if content is gzip compressed by magic bytes."""
        return len(content) >= 2 and content[:2] == b"\x1f\x8b"

    @staticmethod
    def _parse_xml(content: bytes) -> ET.Element:
        try:
            return ET.fromstring(content)
        except ET.ParseError as e:
            raise SitemapParseError(f"Invalid XML: {e}")

    @staticmethod
    def _locs(root: ET.Element, entry_tag: str) -> List[str]:
        """Collect <loc> values of <url> or <sitemap> entries."""
        entries = root.findall(f"sm:{entry_tag}", SITEMAP_NS)
        namespaced = bool(entries)

        # Fall back to no namespace
        if not entries:
            entries = root.findall(entry_tag)

        locs = []
        for entry in entries:
            loc = entry.find("sm:loc", SITEMAP_NS) if namespaced else entry.find("loc")
            if loc is not None and loc.text and loc.text.strip():
                locs.append(loc.text.strip())
        return locs


def get_sitemap_resolver() -> SitemapResolver:
    """
    Factory function to get a configured SitemapResolver.

    Returns:
        SitemapResolver using AUDITOR_REQUEST_TIMEOUT
    """
    return SitemapResolver()

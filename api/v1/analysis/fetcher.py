"""
HTTP content fetcher backed by httpx and BeautifulSoup.
"""

import logging

import httpx
from bs4 import BeautifulSoup

from api.config.settings import Settings
from api.v1.analysis.schemas import FetchedContent
from api.v1.core.exceptions import FetchError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "text/plain")
MAX_LINKS = 100


def is_valid_url(url: str) -> bool:
    """Accept only absolute http(s) URLs with a host."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        return False
    return parsed.scheme in ALLOWED_SCHEMES and bool(parsed.host)


class HttpContentFetcher:
    """
    Fetch a page and extract the parts analysis needs.

    Extracts title, visible text (scripts, styles and navigation chrome
    removed), absolute outbound links and meta tags.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.fetch_timeout_s,
            follow_redirects=True,
            headers={
                "User-Agent": self.settings.fetch_user_agent,
                "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5",
            },
            transport=self._transport,
        )

    async def fetch_content(self, url: str) -> FetchedContent:
        if not is_valid_url(url):
            raise FetchError(f"Invalid URL: {url}")

        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out fetching {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Could not fetch {url}: {e}") from e

        if response.status_code >= 400:
            raise FetchError(
                f"Fetching {url} returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if content_type and content_type not in HTML_CONTENT_TYPES:
            raise FetchError(
                f"Unsupported content type: {content_type}",
                details={"content_type": content_type},
            )

        content = self.parse_html(response.text, response.url)
        logger.info(
            "Fetched website content",
            extra={
                "url": str(response.url),
                "status_code": response.status_code,
                "text_chars": len(content.text),
                "link_count": len(content.links),
            },
        )
        return content

    def parse_html(self, html: str, base_url: httpx.URL | str) -> FetchedContent:
        base = httpx.URL(str(base_url))
        soup = BeautifulSoup(html, "html.parser")

        title = soup.title.get_text(strip=True) if soup.title else ""

        metadata: dict[str, str] = {}
        for meta in soup.find_all("meta"):
            name = meta.get("name") or meta.get("property")
            value = meta.get("content")
            if not name or not value:
                continue
            name = name.lower()
            if name in ("description", "keywords") or name.startswith("og:"):
                metadata[name] = value.strip()

        links: list[str] = []
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
                continue
            try:
                absolute = str(base.join(href))
            except httpx.InvalidURL:
                continue
            if is_valid_url(absolute) and absolute not in links:
                links.append(absolute)
            if len(links) >= MAX_LINKS:
                break

        for tag in soup(["script", "style", "noscript", "svg", "nav", "footer"]):
            tag.decompose()
        text = " ".join(soup.get_text(separator=" ").split())
        text = text[: self.settings.fetch_max_text_chars]

        return FetchedContent(
            url=str(base),
            title=title,
            text=text,
            links=links,
            metadata=metadata,
        )

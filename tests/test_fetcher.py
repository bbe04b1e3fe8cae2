"""Tests for the HTTP content fetcher."""

import httpx
import pytest

from api.v1.analysis.fetcher import HttpContentFetcher, is_valid_url
from api.v1.core.exceptions import FetchError
from tests.conftest import EXAMPLE_HTML


def fetcher_for(test_settings, handler) -> HttpContentFetcher:
    return HttpContentFetcher(test_settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_extracts_page_parts(fetcher):
    """Title, meta tags, absolute links and visible text are extracted."""
    content = await fetcher.fetch_content("https://example.com")

    assert content.url.rstrip("/") == "https://example.com"
    assert content.title == "Example Bakery | Fresh bread daily"
    assert content.metadata["og:site_name"] == "Example Bakery"
    assert content.metadata["description"].startswith("Example Bakery bakes")
    assert content.links == [
        "https://example.com/menu",
        "https://example.com/order",
        "https://example.com/about",
    ]
    assert "sourdough bread" in content.text
    assert "tracking" not in content.text
    assert "Menu" not in content.text


@pytest.mark.asyncio
async def test_http_error_status_is_fetch_error(fetcher):
    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_content("https://missing.example/page")

    assert exc_info.value.details["status_code"] == 404
    assert exc_info.value.error_code == "FETCH_ERROR"


@pytest.mark.asyncio
async def test_non_html_content_is_rejected(test_settings):
    def pdf(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=b"%PDF-1.7", headers={"content-type": "application/pdf"}
        )

    with pytest.raises(FetchError, match="Unsupported content type"):
        await fetcher_for(test_settings, pdf).fetch_content("https://example.com/doc")


@pytest.mark.asyncio
async def test_timeout_is_fetch_error(test_settings):
    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(FetchError, match="Timed out"):
        await fetcher_for(test_settings, slow).fetch_content("https://example.com")


@pytest.mark.asyncio
async def test_connection_error_is_fetch_error(test_settings):
    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchError, match="Could not fetch"):
        await fetcher_for(test_settings, refused).fetch_content("https://example.com")


@pytest.mark.asyncio
async def test_redirects_are_followed(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old":
            return httpx.Response(301, headers={"location": "https://example.com/new"})
        return httpx.Response(
            200, text=EXAMPLE_HTML, headers={"content-type": "text/html"}
        )

    content = await fetcher_for(test_settings, handler).fetch_content(
        "https://example.com/old"
    )

    assert content.url == "https://example.com/new"


@pytest.mark.asyncio
async def test_invalid_url_never_hits_network(test_settings):
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(FetchError, match="Invalid URL"):
        await fetcher_for(test_settings, unreachable).fetch_content("not-a-url")


def test_text_is_truncated(test_settings):
    settings = test_settings.model_copy(update={"fetch_max_text_chars": 20})
    content = HttpContentFetcher(settings).parse_html(EXAMPLE_HTML, "https://example.com")

    assert len(content.text) <= 20


@pytest.mark.parametrize(
    "url,valid",
    [
        ("https://example.com", True),
        ("http://example.com/path?q=1", True),
        ("ftp://example.com", False),
        ("example.com", False),
        ("", False),
    ],
)
def test_is_valid_url(url, valid):
    assert is_valid_url(url) is valid

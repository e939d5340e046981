"""WooCommerce Store API product fetching.

This module fetches a storefront's public product listing and converts each
entry into a Product with HTML stripped from its text fields.

Endpoint:
    GET {base_url}/wp-json/wc/store/v1/products?per_page=N

Error Handling Strategy:
    - SSL certificate errors trigger one retry without verification
    - Any other HTTP, timeout or decode failure raises UpstreamFetchFailure;
      a store that can't be read is an error for that site, not an empty scan
    - Entries without a name or permalink are skipped with a debug log
"""

import asyncio
import html
import logging
import re
import ssl
from html.parser import HTMLParser
from io import StringIO
from typing import Any

import aiohttp
import certifi

from errors import UpstreamFetchFailure
from models.product import Product

logger = logging.getLogger(__name__)

PRODUCTS_ENDPOINT = "/wp-json/wc/store/v1/products"

# Browser-like User-Agent to avoid being blocked by some servers
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def _ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create SSL context with optional certificate verification.

    Args:
        verify: If True, verify SSL certificates using certifi bundle.
                If False, disable verification (for problematic servers).

    Returns:
        Configured SSL context
    """
    if verify:
        return ssl.create_default_context(cafile=certifi.where())
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


class _HTMLTextExtractor(HTMLParser):
    """Collect text content from product HTML, dropping script and style.

    Usage:
        >>> parser = _HTMLTextExtractor()
        >>> parser.feed("<p>Sharp <b>steel</b> blade</p>")
        >>> parser.get_text()
        'Sharp steel blade'
    """

    SKIP_TAGS = frozenset({"script", "style"})

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._buffer = StringIO()
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self.SKIP_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag):
        if tag in self.SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data):
        if self._skip_depth == 0:
            self._buffer.write(data)

    def get_text(self) -> str:
        return self._buffer.getvalue()


def strip_html(markup: str | None) -> str:
    """Return the readable text of an HTML fragment with whitespace collapsed."""
    if not markup:
        return ""
    parser = _HTMLTextExtractor()
    parser.feed(markup)
    parser.close()
    return re.sub(r"\s+", " ", parser.get_text()).strip()


def products_url(base_url: str, per_page: int = 25) -> str:
    """Build the Store API listing URL for a storefront."""
    return f"{base_url.rstrip('/')}{PRODUCTS_ENDPOINT}?per_page={per_page}"


def parse_products(payload: Any) -> list[Product]:
    """Convert a Store API JSON payload into Products.

    Args:
        payload: Decoded JSON body (expected: list of product objects)

    Returns:
        Products with HTML stripped, in feed order

    Raises:
        UpstreamFetchFailure: If the payload is not a list
    """
    if not isinstance(payload, list):
        raise UpstreamFetchFailure(f"Unexpected product payload: {type(payload).__name__}")

    products = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        name = html.unescape(entry.get("name") or "").strip()
        permalink = (entry.get("permalink") or "").strip()
        if not name or not permalink:
            logger.debug("Skipping product without name or permalink: %r", entry.get("id"))
            continue
        products.append(Product(
            name=name,
            permalink=permalink,
            description=strip_html(entry.get("description")),
            short_description=strip_html(entry.get("short_description")),
        ))
    return products


async def _fetch_json(
    session: aiohttp.ClientSession,
    url: str,
    timeout: int,
    verify_ssl: bool = True,
) -> Any:
    """GET a JSON document with SSL fallback."""
    try:
        async with session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            ssl=_ssl_context(verify_ssl),
        ) as resp:
            if resp.status != 200:
                raise UpstreamFetchFailure(f"{url}: HTTP {resp.status}")
            return await resp.json(content_type=None)
    except aiohttp.ClientSSLError as e:
        if verify_ssl:
            logger.debug("Products %s: SSL error, retrying without verification", url)
            return await _fetch_json(session, url, timeout, verify_ssl=False)
        raise UpstreamFetchFailure(f"{url}: SSL verification failed: {e}") from e
    except asyncio.TimeoutError as e:
        raise UpstreamFetchFailure(f"{url}: request timed out after {timeout}s") from e
    except aiohttp.ClientError as e:
        raise UpstreamFetchFailure(f"{url}: {type(e).__name__}: {e}") from e
    except ValueError as e:
        raise UpstreamFetchFailure(f"{url}: invalid JSON: {e}") from e


async def fetch_products(
    base_url: str,
    per_page: int = 25,
    timeout: int = 30,
    session: aiohttp.ClientSession | None = None,
) -> list[Product]:
    """Fetch a storefront's products from the WooCommerce Store API.

    Args:
        base_url: Storefront base URL, e.g. https://shop.example
        per_page: Page size sent to the API (first page only)
        timeout: Request timeout in seconds
        session: Optional shared session (one is created if omitted)

    Returns:
        Products with HTML stripped

    Raises:
        UpstreamFetchFailure: On HTTP, network or payload errors
    """
    url = products_url(base_url, per_page)
    if session is None:
        async with aiohttp.ClientSession() as own_session:
            payload = await _fetch_json(own_session, url, timeout)
    else:
        payload = await _fetch_json(session, url, timeout)

    products = parse_products(payload)
    logger.info("Fetched products | site=%s count=%d", base_url, len(products))
    return products

"""
Link previews: the Open Graph image of a web page.
"""
from typing import Optional
from urllib.parse import urljoin
import logging

import httpx
from bs4 import BeautifulSoup
from django.conf import settings

logger = logging.getLogger(__name__)


class PreviewFetchError(Exception):
    """The page could not be fetched or parsed."""


def _get_headers() -> dict:
    # Some shops only serve og tags to real browsers
    return {
        'User-Agent': settings.OG_IMAGE_USER_AGENT,
        'Accept-Language': 'en-US,en;q=0.9',
    }


def extract_og_image(html: str, base_url: str) -> Optional[str]:
    """Absolute URL of the page's `og:image`, or None when it has none."""
    soup = BeautifulSoup(html, 'html.parser')
    meta = soup.select_one('meta[property="og:image"]')
    content = meta.get('content') if meta else None
    if not content or not content.strip():
        return None
    return urljoin(base_url, content.strip())


def fetch_og_image(url: str, timeout: Optional[float] = None) -> Optional[str]:
    """
    Fetch `url` and return its preview image URL (None if the page has none).

    Raises PreviewFetchError when the request fails or the body is unreadable.
    """
    timeout = timeout if timeout is not None else settings.OG_IMAGE_TIMEOUT

    try:
        with httpx.Client(timeout=timeout, follow_redirects=True, headers=_get_headers()) as client:
            response = client.get(url)
            html = response.text
    except (httpx.HTTPError, httpx.InvalidURL, UnicodeError, ValueError) as e:
        # UnicodeError: host names the idna codec rejects
        logger.warning(f"OG image fetch failed for {url}: {e}")
        raise PreviewFetchError(str(e)) from e

    try:
        og_image = extract_og_image(html, url)
    except Exception as e:
        logger.error(f"OG image parse failed for {url}: {e}")
        raise PreviewFetchError(str(e)) from e

    if og_image:
        logger.info(f"OG image for {url}: {og_image}")
    else:
        logger.info(f"No OG image found for {url}")
    return og_image

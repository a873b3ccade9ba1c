"""
Link previews for post composition.

The page is fetched with ``httpx`` and its metadata read with a small
``HTMLParser`` subclass.  Open Graph tags win over Twitter card tags,
which win over ``<title>`` and ``<meta name="description">``.
"""

import logging
from html.parser import HTMLParser
from typing import Any, Dict, Optional
from urllib.parse import urljoin, urlparse

import httpx

from honua_api.app.core.config import settings
from honua_api.app.core.errors import ValidationError

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 200

# field -> meta keys in order of preference
META_PRIORITY = {
    "title": ("og:title", "twitter:title"),
    "description": ("og:description", "twitter:description", "description"),
    "image": ("og:image", "twitter:image"),
}


class _MetadataParser(HTMLParser):
    """Collect ``<meta>`` contents and the document title."""

    def __init__(self):
        super().__init__()
        self.meta: Dict[str, str] = {}
        self.title_parts = []
        self._in_title = False

    def handle_starttag(self, tag, attrs):
        attrs_d = dict(attrs)
        if tag == "meta":
            key = (attrs_d.get("property") or attrs_d.get("name") or "").lower()
            content = attrs_d.get("content")
            if key and content is not None:
                self.meta.setdefault(key, content)
        elif tag == "title":
            self._in_title = True

    def handle_endtag(self, tag):
        if tag == "title":
            self._in_title = False

    def handle_data(self, data):
        if self._in_title:
            self.title_parts.append(data)

    @property
    def title(self) -> str:
        return "".join(self.title_parts)


def parse_metadata(html: str, page_url: str) -> Dict[str, Optional[str]]:
    """Extract title, description and absolute image URL from a page."""
    parser = _MetadataParser()
    parser.feed(html)
    values: Dict[str, Optional[str]] = {}
    for field, keys in META_PRIORITY.items():
        values[field] = next((parser.meta[k] for k in keys if parser.meta.get(k)), None)
    title = values["title"] or parser.title or ""
    description = values["description"] or ""
    image = values["image"]
    if image and not image.startswith("http"):
        image = urljoin(page_url, image)
    return {
        "title": title.strip()[:MAX_TITLE_LENGTH],
        "description": description.strip()[:MAX_DESCRIPTION_LENGTH],
        "image": image or None,
    }


class LinkPreviewService:
    @classmethod
    async def preview(cls, url: Optional[str]) -> Dict[str, Any]:
        """Fetch ``url`` and return ``{url, title, description, image, domain}``."""
        if not url:
            raise ValidationError("URL is required")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Invalid URL format")
        try:
            response = httpx.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=settings.link_preview_timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Link preview fetch failed for %s: %s", url, exc)
            raise ValidationError("Failed to fetch URL")
        metadata = parse_metadata(response.text, str(response.url))
        return {"url": url, **metadata, "domain": parsed.hostname}

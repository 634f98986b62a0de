"""Helpers for classifying page URLs and normalizing video identifiers."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Iterable, List, Optional
from urllib.parse import parse_qs, quote, unquote, urlparse

import tldextract

LOGGER = logging.getLogger(__name__)

SUPPORTED_DOMAIN = "youtube.com"
SHORT_LINK_HOST = "youtu.be"
CANONICAL_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

# Query parameter carrying the video id / marking a playlist page
VIDEO_PARAM = "v"
COLLECTION_PARAM = "list"

# Host pages append ranking metadata after this delimiter
REFERENCE_DELIMITER = "&"


def _normalize_host(host: Optional[str]) -> str:
    """Normalize hostname by removing port and lowercasing."""
    if not host:
        return ""
    return host.split(":")[0].lower()


@lru_cache(maxsize=256)
def _registrable_domain(host: str) -> Optional[str]:
    """Extract the registrable domain from a hostname."""
    if not host:
        return None
    extracted = tldextract.extract(host)
    if not extracted.domain or not extracted.suffix:
        return host
    return f"{extracted.domain}.{extracted.suffix}"


def is_supported_url(url: Optional[str]) -> bool:
    """Return True if *url* is a page on the supported video site."""
    if not url or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    return _registrable_domain(_normalize_host(parsed.netloc)) == SUPPORTED_DOMAIN


def is_collection_url(url: str) -> bool:
    """Return True if the page URL carries a playlist indicator parameter."""
    query = parse_qs(urlparse(url).query, keep_blank_values=True)
    return COLLECTION_PARAM in query


def extract_video_id(url: str) -> Optional[str]:
    """Best-effort video id extraction from a watch URL or short link."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if _normalize_host(parsed.netloc) == SHORT_LINK_HOST and parsed.path.strip("/"):
        return unquote(parsed.path.strip("/").split("/")[0])
    values = parse_qs(parsed.query).get(VIDEO_PARAM)
    if values and values[0].strip():
        return values[0].strip()
    return None


def normalize_video_url(raw: str) -> str:
    """Reduce *raw* to ``https://www.youtube.com/watch?v=<id>``.

    Every query parameter other than ``v`` is dropped, so two links to the
    same video always normalize identically and the function is idempotent.
    Input without a recognizable id is returned stripped but unchanged.
    """
    video_id = extract_video_id(raw)
    if video_id is None:
        LOGGER.debug("No video id in %r; keeping it as-is", raw)
        return raw.strip()
    return CANONICAL_WATCH_URL.format(video_id=quote(video_id, safe=""))


def normalize_all(raws: Iterable[str]) -> List[str]:
    """Normalize a batch of raw links, dropping blanks and keeping order."""
    identifiers = []
    for raw in raws:
        if not raw or not raw.strip():
            continue
        identifiers.append(normalize_video_url(raw))
    return identifiers


def truncate_reference(href: str) -> str:
    """Cut an extracted link at the first trailing parameter delimiter."""
    return href.split(REFERENCE_DELIMITER, 1)[0]

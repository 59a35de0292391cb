"""
URL normalization, filtering and link extraction.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import List, Optional, Pattern, Tuple
from urllib.parse import parse_qsl, urlencode, urldefrag, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup, SoupStrainer

# Pre-defined file extensions to skip (frozen set for O(1) lookup)
SKIP_EXTENSIONS: frozenset[str] = frozenset((
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg",
    ".pdf", ".zip", ".rar", ".7z",
    ".mp4", ".mp3", ".wav", ".webm",
    ".css", ".js", ".map", ".ico", ".xml",
    ".woff", ".woff2", ".ttf", ".eot",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
))

# Path segments that never carry page-level structured data worth scanning
SKIP_SEGMENTS = (
    # Admin areas
    "wp-admin", "admin", "dashboard", "login", "register",
    # API endpoints
    "api", "ajax", "rest",
    # Feeds
    "feed", "rss", "atom",
    # Archives
    "tag", "category", "author", "date",
)

# Segments match with or without a trailing slash (URLs are stored without one)
SKIP_PATTERNS: Tuple[Pattern[str], ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    *(rf"/{segment}(?:/|$|\?)" for segment in SKIP_SEGMENTS),
    r"/search\?",
    # Tracking parameters
    r"[?&]utm_", r"[?&]fbclid=", r"[?&]gclid=",
    r"^mailto:", r"^tel:", r"^javascript:",
))

MAX_URL_LENGTH = 200

# SoupStrainer to parse only link-bearing tags (faster link extraction)
LINK_STRAINER = SoupStrainer(["a", "area"], href=True)


def utc_now_iso() -> str:
    """Return current UTC time in ISO format."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def normalize_url(url: str, base: Optional[str] = None) -> Optional[str]:
    """
    Normalize URL for deduplication and comparison.

    - Joins relative URLs against base
    - Drops fragments (#...)
    - Normalizes scheme/host case
    - Removes default ports (:80, :443)
    - Drops the trailing slash (except for the root path)
    - Sorts query parameters so their order does not matter
    """
    if not url:
        return None

    url = url.strip()
    joined, _ = urldefrag(urljoin(base, url) if base else url)
    parsed = urlparse(joined)

    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None

    # Normalize hostname and port
    hostname = parsed.hostname.lower()
    try:
        port = parsed.port
    except ValueError:
        return None

    if (parsed.scheme == "http" and port == 80) or (parsed.scheme == "https" and port == 443):
        netloc = hostname
    elif port:
        netloc = f"{hostname}:{port}"
    else:
        netloc = hostname

    path = parsed.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))

    return urlunparse((
        parsed.scheme.lower(),
        netloc,
        path,
        parsed.params,
        query,
        ""  # No fragment
    ))


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for a URL."""
    parsed = urlparse(url)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def is_local(url: str, base_origin: str) -> bool:
    """Check if URL has the same scheme and netloc as the base origin."""
    return origin_of(url) == base_origin.rstrip("/").lower()


def should_skip_url(url: str) -> bool:
    """Check whether a URL points at something other than a content page."""
    if len(url) >= MAX_URL_LENGTH:
        return True
    if any(pattern.search(url) for pattern in SKIP_PATTERNS):
        return True
    path_lower = (urlparse(url).path or "").lower()
    return any(path_lower.endswith(ext) for ext in SKIP_EXTENSIONS)


def extract_links(html: str) -> List[str]:
    """Extract all href values from <a>/<area> tags using optimized parsing."""
    soup = BeautifulSoup(html, "lxml", parse_only=LINK_STRAINER)
    return [tag["href"] for tag in soup.find_all(["a", "area"]) if tag.get("href")]


def filter_local_links(hrefs: List[str], page_url: str, base_origin: str) -> List[str]:
    """
    Resolve hrefs against the page they were found on and keep same-origin
    content URLs, normalized and in first-seen order.
    """
    seen = set()
    links: List[str] = []
    for href in hrefs:
        # mailto:/tel:/javascript: hrefs fall out here (non-http scheme)
        target = normalize_url(href, base=page_url)
        if not target or not is_local(target, base_origin) or should_skip_url(target):
            continue
        if target not in seen:
            seen.add(target)
            links.append(target)
    return links


def title_from_url(url: str) -> str:
    """Generate a readable page title from the last path segment."""
    try:
        segments = [s for s in urlparse(url).path.split("/") if s]
    except ValueError:
        return "Unknown Page"
    if not segments:
        return "Home Page"
    last = re.sub(r"\.(html?|php|aspx?)$", "", segments[-1], flags=re.IGNORECASE)
    words = re.split(r"[-_ ]+", last)
    return " ".join(w[:1].upper() + w[1:] for w in words if w) or "Page"

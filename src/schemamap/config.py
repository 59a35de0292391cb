"""
Crawl settings with environment overrides.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

DEFAULT_USER_AGENT = "SchemaMap/1.0 (+structured-data consistency crawler)"


@dataclass(slots=True)
class CrawlOptions:
    """Configuration for one scan."""
    # Crawl limits
    max_pages: int = 25
    crawl_depth: int = 3
    max_links_per_page: int = 10

    # Concurrency and politeness
    max_concurrency: int = 5
    crawl_delay: float = 1.0          # seconds between requests, per worker
    timeout: float = 30.0             # per render call, seconds
    request_timeout: float = 15.0     # sitemap/robots fetches, seconds

    # Discovery
    include_sitemaps: bool = True
    include_common_pages: bool = True
    follow_links: bool = True

    # Rendering
    renderer: str = "browser"         # "browser" (Playwright) or "static" (requests)
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1920
    viewport_height: int = 1080

    # Storage
    scans_dir: str = "data/scans"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "CrawlOptions":
        """
        Build options from ``SCHEMAMAP_<FIELD>`` environment variables, then
        apply explicit keyword overrides (``None`` values are ignored).
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(f"SCHEMAMAP_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(raw, type(getattr(cls(), f.name)))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def merged(self, **overrides: Any) -> "CrawlOptions":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _coerce(raw: str, target: type) -> Any:
    if target is bool:
        return raw.strip().lower() not in ("0", "false", "no", "off")
    if target is int:
        return int(raw)
    if target is float:
        return float(raw)
    return raw

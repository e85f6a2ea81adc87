"""
Link Filter
===========
URL canonicalisation and outbound-link filtering for site exploration.

All URL comparisons go through ``canonicalize()`` so that node ids, host
checks and path de-duplication agree on what "the same URL" means:

- Fragment removal (hash-router routes such as ``#/pricing`` are kept)
- Percent-encoding normalisation (decode unreserved, no double-decode)
- Dot-segment resolution (``/a/../b`` → ``/b``)
- Trailing-slash normalisation
- Host case normalisation, ``www.`` stripping, default-port stripping
- Path case is **preserved**

Public API
----------
- ``canonicalize(url)``      - canonical components or ``None``
- ``is_same_host(a, b)``     - host equality after canonicalisation
- ``is_asset_url(url)``      - static asset check by extension
- ``Link``                   - one captured outbound link
- ``LinkFilter``             - same-host / asset / dedup / cap filter
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, NamedTuple, Optional
from urllib.parse import urljoin, urlparse, urlunparse

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------
# Canonical URL representation
# -----------------------------------------------------------------------

class CanonURL(NamedTuple):
    """Immutable, fully-normalised URL components."""
    scheme: str
    host: str        # lower-cased, www-stripped, default-port stripped
    path: str        # dot-segments resolved, trailing-slash stripped, case preserved
    query: str
    raw: str         # reconstructed full URL string
    route: str = ""  # hash-router fragment, kept in raw

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"


_UNRESERVED_RE = re.compile(r"%([0-9A-Fa-f]{2})")

_UNRESERVED_CHARS = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
    "0123456789-._~"
)


def _decode_unreserved(path: str) -> str:
    """Decode percent-encoded *unreserved* characters only (RFC 3986 §2.3)."""

    def _replace(m: re.Match) -> str:
        char = chr(int(m.group(1), 16))
        if char in _UNRESERVED_CHARS:
            return char
        return f"%{m.group(1).upper()}"

    return _UNRESERVED_RE.sub(_replace, path)


def _strip_default_port(netloc: str, scheme: str) -> str:
    """Remove ``:80`` for http and ``:443`` for https from *netloc*."""
    if ":" not in netloc:
        return netloc
    host, _, port = netloc.rpartition(":")
    if (scheme, port) in (("http", "80"), ("https", "443")):
        return host
    return netloc


def canonicalize(url: str, base: Optional[str] = None) -> Optional[CanonURL]:
    """
    Produce a canonical ``CanonURL`` from a raw (possibly relative) URL.

    Returns ``None`` for empty, non-HTTP(S), ``javascript:``/``mailto:``
    style and fragment-only hrefs.
    """
    if not url:
        return None
    url = url.strip()
    if url.lower().startswith(("javascript:", "mailto:", "tel:", "data:")):
        return None
    if url.startswith("#") and not url.startswith(("#/", "#!/")):
        return None
    if base:
        try:
            url = urljoin(base, url)
        except ValueError:
            return None

    try:
        p = urlparse(url)
    except ValueError:
        return None

    if p.scheme not in ("http", "https") or not p.netloc:
        return None

    scheme = p.scheme.lower()
    netloc = _strip_default_port(p.netloc.lower(), scheme)
    host = netloc.removeprefix("www.")

    raw_path = _decode_unreserved(p.path or "/")
    raw_path = posixpath.normpath(raw_path)
    if not raw_path.startswith("/"):
        raw_path = "/" + raw_path
    # normpath keeps a leading "//"
    if raw_path.startswith("//"):
        raw_path = "/" + raw_path.lstrip("/")
    if raw_path != "/" and raw_path.endswith("/"):
        raw_path = raw_path.rstrip("/")

    # client-side routes ("#/pricing", "#!/pricing") are part of the address
    fragment = p.fragment if p.fragment.startswith(("/", "!/")) else ""
    raw = urlunparse((scheme, host, raw_path, "", p.query, fragment))
    return CanonURL(scheme=scheme, host=host, path=raw_path, query=p.query, raw=raw, route=fragment)


def is_same_host(candidate_url: str, base_url: str) -> bool:
    """True when both URLs canonicalise to the same host."""
    a = canonicalize(candidate_url)
    b = canonicalize(base_url)
    return a is not None and b is not None and a.host == b.host


_ASSET_RE = re.compile(
    r"\.(js|mjs|css|png|jpe?g|svg|gif|webp|ico|woff2?|ttf|eot|pdf|zip|mp4|mp3|xml|json)$",
    re.IGNORECASE,
)


def is_asset_url(url: str) -> bool:
    """True when the URL path ends in a static-asset extension."""
    canon = canonicalize(url)
    path = canon.path if canon else url.split("?", 1)[0]
    return bool(_ASSET_RE.search(path))


# -----------------------------------------------------------------------
# Page categories (keyword → bucket)
# -----------------------------------------------------------------------

_CATEGORY_KEYWORDS = [
    ("features", ("feature", "product", "solution", "how-it-works", "tour", "demo")),
    ("pricing", ("pricing", "price", "plans")),
    ("about", ("about", "company", "team")),
    ("docs", ("docs", "documentation", "guide", "help")),
    ("blog", ("blog", "news", "article")),
]


def categorize_path(path: str) -> str:
    """Coarse page category from a URL path (``other`` when nothing matches)."""
    p = (path or "").lower()
    if p in ("", "/"):
        return "home"
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in p for k in keywords):
            return category
    return "other"


# -----------------------------------------------------------------------
# Link capture (single DOM pass)
# -----------------------------------------------------------------------

# Returns [{text, href, selector, isNav}] for every anchor on the page.
LINK_CAPTURE_JS = """
() => {
    const out = [];
    const navRoots = 'nav, header, [role="navigation"]';
    document.querySelectorAll('a[href]').forEach(el => {
        const raw = el.getAttribute('href') || '';
        if (!raw) return;
        const quoted = raw.replace(/\\\\/g, '\\\\\\\\').replace(/"/g, '\\\\"');
        out.push({
            text: (el.innerText || el.textContent || '').trim().slice(0, 120),
            href: el.href || raw,
            selector: 'a[href="' + quoted + '"]',
            isNav: !!el.closest(navRoots),
        });
    });
    return out;
}
"""


@dataclass(frozen=True)
class Link:
    """One same-host outbound link captured from a page."""
    text: str
    href: str               # canonical absolute URL
    selector: str = ""
    is_nav: bool = False
    path: str = "/"

    @property
    def key(self) -> str:
        """Identity used for processed-link bookkeeping."""
        return self.href

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "href": self.href,
            "selector": self.selector,
            "is_nav": self.is_nav,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Link":
        return cls(
            text=data.get("text", ""),
            href=data.get("href", ""),
            selector=data.get("selector", ""),
            is_nav=bool(data.get("is_nav", data.get("isNav", False))),
            path=data.get("path", "/"),
        )


@dataclass
class LinkFilter:
    """
    Filters raw captured anchors down to explorable same-host links.

    Parameters
    ----------
    base_url : str
        Start URL; its canonical host is the only accepted host.
    max_links : int
        Cap on the number of links returned per page.
    """

    base_url: str = ""
    max_links: int = 50

    _base: Optional[CanonURL] = field(init=False, repr=False, default=None)

    def __post_init__(self):
        if self.base_url:
            self._base = canonicalize(self.base_url)
            if self._base is None:
                logger.warning(f"[LINKS] Could not canonicalise base URL: {self.base_url}")

    @property
    def host(self) -> str:
        return self._base.host if self._base else ""

    def accepts_host(self, url: str) -> bool:
        cand = canonicalize(url)
        return cand is not None and self._base is not None and cand.host == self._base.host

    def filter_links(
        self,
        raw_links: Iterable[Dict[str, Any]],
        page_url: Optional[str] = None,
    ) -> List[Link]:
        """
        Apply the shared filter chain to raw ``{text, href, selector, isNav}``
        records, in document order:

        1. Resolve relative hrefs against *page_url* (or the base URL)
        2. Drop non-HTTP(S) and other-host links
        3. Drop static assets
        4. Drop repeated paths
        5. Stop at ``max_links``
        """
        if self._base is None:
            return []
        resolve_base = page_url or self.base_url

        seen_paths = set()
        links: List[Link] = []
        rejected_host = 0
        rejected_asset = 0

        for raw in raw_links or []:
            if not isinstance(raw, dict):
                continue
            cand = canonicalize(str(raw.get("href") or ""), base=resolve_base)
            if cand is None:
                continue
            if cand.host != self._base.host:
                rejected_host += 1
                continue
            if _ASSET_RE.search(cand.path):
                rejected_asset += 1
                continue
            path_key = cand.path + (f"#{cand.route}" if cand.route else "")
            if path_key in seen_paths:
                continue
            seen_paths.add(path_key)

            links.append(Link(
                text=str(raw.get("text") or "").strip(),
                href=cand.raw,
                selector=str(raw.get("selector") or ""),
                is_nav=bool(raw.get("isNav", raw.get("is_nav", False))),
                path=cand.path,
            ))
            if len(links) >= self.max_links:
                break

        logger.debug(
            f"[LINKS] kept={len(links)} other_host={rejected_host} "
            f"assets={rejected_asset} cap={self.max_links}"
        )
        return links

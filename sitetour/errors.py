"""
Error Types
===========
Exception hierarchy shared by the explorer, the SPA detector and the
ranking oracle.

Only ``StartUrlUnreachable`` ever escapes ``SiteExplorer.explore()``.
Everything else is caught close to where it happens, logged, and turned
into a conservative outcome (link marked explored, heuristic ranking,
"no state change").
"""

from __future__ import annotations

from typing import Optional


class SiteTourError(Exception):
    """Base class for all sitetour errors."""


class NavigationFailure(SiteTourError):
    """A navigate/click/evaluate call failed or timed out."""

    def __init__(self, url: str, reason: str = "", cause: Optional[BaseException] = None):
        self.url = url
        self.reason = reason
        self.cause = cause
        msg = f"Navigation to {url} failed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StartUrlUnreachable(NavigationFailure):
    """The start URL could not be loaded. No graph can be built."""


class OracleFailure(SiteTourError):
    """The ranking oracle raised, timed out, or returned unparsable output."""


class GraphLimitReached(SiteTourError):
    """The navigation graph hit its configured node ceiling."""

    def __init__(self, max_nodes: int):
        self.max_nodes = max_nodes
        super().__init__(f"Navigation graph is full ({max_nodes} nodes)")

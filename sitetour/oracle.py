"""
Ranking Oracle
==============
Optional AI ranking of candidate links, with a mandatory deterministic
fallback.

The oracle gets page context and a candidate list of ``{path, text,
is_nav}`` and returns an ordered subset of paths.  Any failure (missing
key, transport error, timeout, unparsable reply) raises
``OracleFailure``; ``rank_with_fallback`` converts that into the keyword
heuristic so exploration never blocks on an external service.

To add a provider:
    1. Subclass ``BaseRankingOracle``
    2. Implement ``rank_paths(context, candidates)``
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from openai import AsyncOpenAI, OpenAIError

from .errors import OracleFailure

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


@dataclass
class RankingCandidate:
    path: str
    text: str = ""
    is_nav: bool = False


@dataclass
class PageContext:
    url: str
    title: str = ""
    description: str = ""
    focus: str = "features"


# ---------------------------------------------------------------------------
# Deterministic fallback
# ---------------------------------------------------------------------------

# (keyword, weight) checked against path + text, lower-cased
_HEURISTIC_WEIGHTS: Tuple[Tuple[str, int], ...] = (
    ("feature", 30),
    ("pricing", 25),
    ("how", 20),
    ("product", 20),
    ("demo", 25),
    ("tour", 25),
    ("about", 15),
    ("docs", 15),
    ("blog", -20),
    ("login", -30),
    ("sign", -20),
    ("terms", -50),
    ("privacy", -50),
    ("careers", -40),
)
_NAV_BONUS = 20


def heuristic_score(candidate: RankingCandidate) -> int:
    haystack = f"{candidate.path} {candidate.text}".lower()
    score = _NAV_BONUS if candidate.is_nav else 0
    for keyword, weight in _HEURISTIC_WEIGHTS:
        if keyword in haystack:
            score += weight
    return score


def heuristic_prioritize(candidates: Sequence[RankingCandidate]) -> List[str]:
    """Paths ordered by keyword score, ties kept in document order."""
    ranked = sorted(
        enumerate(candidates),
        key=lambda pair: (-heuristic_score(pair[1]), pair[0]),
    )
    return [c.path for _, c in ranked]


# ---------------------------------------------------------------------------
# Oracle contract
# ---------------------------------------------------------------------------

class BaseRankingOracle(ABC):
    """Ranks candidate paths for a demo walkthrough."""

    name: str = "oracle"

    @abstractmethod
    async def rank_paths(
        self,
        context: PageContext,
        candidates: Sequence[RankingCandidate],
    ) -> List[str]:
        """Ordered subset of candidate paths. Raises ``OracleFailure``."""
        ...


_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


def parse_ranked_paths(reply: str, candidates: Sequence[RankingCandidate]) -> List[str]:
    """
    Extract the first JSON array of paths from a model reply.

    Unknown paths and repeats are dropped.  An empty result is a failure.
    """
    match = _JSON_ARRAY_RE.search(reply or "")
    if not match:
        raise OracleFailure("reply contains no JSON array")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise OracleFailure(f"reply is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise OracleFailure("reply is not a list")

    known = {c.path for c in candidates}
    out: List[str] = []
    for item in data:
        path = item.get("path") if isinstance(item, dict) else item
        if isinstance(path, str) and path in known and path not in out:
            out.append(path)
    if not out:
        raise OracleFailure("reply names none of the candidate paths")
    return out


class OpenAIRankingOracle(BaseRankingOracle):
    """Chat-completions ranking via the OpenAI API."""

    name = "openai"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        timeout_s: float = 20.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.timeout_s = timeout_s
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            try:
                self._client = AsyncOpenAI(api_key=self._api_key)
            except OpenAIError as e:
                raise OracleFailure(f"OpenAI client unavailable: {e}") from e
        return self._client

    @staticmethod
    def build_prompt(context: PageContext, candidates: Sequence[RankingCandidate]) -> str:
        lines = [
            f"You are planning a short product demo video of {context.url}.",
            f"Page title: {context.title or '(none)'}",
        ]
        if context.description:
            lines.append(f"Description: {context.description}")
        lines.append(f"Focus: {context.focus}")
        lines.append("")
        lines.append("Candidate pages (path | link text | in navigation):")
        for c in candidates:
            lines.append(f"- {c.path} | {c.text[:60]} | {'nav' if c.is_nav else '-'}")
        lines.append("")
        lines.append(
            "Return ONLY a JSON array of the most demo-worthy paths, best first. "
            "Skip login, legal, careers and blog pages."
        )
        return "\n".join(lines)

    async def rank_paths(
        self,
        context: PageContext,
        candidates: Sequence[RankingCandidate],
    ) -> List[str]:
        if not candidates:
            return []
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": self.build_prompt(context, candidates)}],
                temperature=0.2,
                timeout=self.timeout_s,
            )
        except OpenAIError as e:
            raise OracleFailure(f"OpenAI request failed: {e}") from e
        reply = response.choices[0].message.content if response.choices else ""
        return parse_ranked_paths(reply or "", candidates)


def create_oracle_from_env(model: Optional[str] = None, timeout_s: float = 20.0) -> Optional[BaseRankingOracle]:
    """An ``OpenAIRankingOracle`` when ``OPENAI_API_KEY`` is set, else ``None``."""
    if not os.getenv("OPENAI_API_KEY"):
        logger.info("[ORACLE] OPENAI_API_KEY not set; using keyword heuristic")
        return None
    return OpenAIRankingOracle(
        model=model or os.getenv("SITETOUR_AI_MODEL", DEFAULT_MODEL),
        timeout_s=timeout_s,
    )


async def rank_with_fallback(
    oracle: Optional[BaseRankingOracle],
    context: PageContext,
    candidates: Sequence[RankingCandidate],
    timeout_s: float = 20.0,
    complete: bool = False,
) -> Tuple[List[str], bool]:
    """
    Rank *candidates* with the oracle, falling back to the heuristic.

    Returns ``(paths, used_oracle)``.  With ``complete=True`` paths the
    oracle left out are appended in heuristic order.
    """
    if oracle is None or not candidates:
        return heuristic_prioritize(candidates), False
    try:
        ranked = await asyncio.wait_for(oracle.rank_paths(context, candidates), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning(f"[ORACLE] {oracle.name} timed out after {timeout_s}s; using heuristic")
        return heuristic_prioritize(candidates), False
    except OracleFailure as e:
        logger.warning(f"[ORACLE] {oracle.name} failed ({e}); using heuristic")
        return heuristic_prioritize(candidates), False
    except Exception as e:
        logger.warning(f"[ORACLE] {oracle.name} raised {type(e).__name__}: {e}; using heuristic")
        return heuristic_prioritize(candidates), False

    if complete:
        rest = [p for p in heuristic_prioritize(candidates) if p not in ranked]
        ranked = list(ranked) + rest
    logger.debug(f"[ORACLE] {oracle.name} ranked {len(ranked)} of {len(candidates)} paths")
    return ranked, True

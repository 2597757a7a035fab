"""Approximate name matching for registry records.

Scoring (0-100):
  1. Empty input -> no match; otherwise normalize (lowercase, drop '.',
     collapse whitespace).
  2. Exact after normalization -> 100, even when both sides normalize to
     nothing ("..." vs ".").
  3. Either side empty after normalization -> no match.
  4. Longest query token shorter than 3 chars -> no match (too ambiguous).
  5. Main-part gate: some candidate token must contain, or be contained by,
     the longest query token.
  6a. Candidate contains the whole query -> 100 * |query| / |candidate|,
      accepted at ``substring_floor``.
  6b. Longest query token (>= 4 chars) absorbed by a candidate token ->
      100 * |token| / max(|candidate|, |token|), accepted at ``token_floor``.

This tolerates initials glued to names ("D.KOWSALYA") while refusing short,
low-information fragments.
"""

import re

from certwatch.core.config import MatchingConfig
from certwatch.core.schemas import NO_MATCH, MatchField, MatchResult, Record

MIN_MAIN_PART = 3
MIN_ABSORBED_PART = 4

_WHITESPACE = re.compile(r"\s+")
_TOKEN_SPLIT = re.compile(r"[\s.]+")

RECORD_FIELDS: tuple[MatchField, ...] = (
    MatchField.NAME,
    MatchField.FATHERS_NAME,
    MatchField.MOTHERS_NAME,
)


def normalize_name(name: str) -> str:
    return _WHITESPACE.sub(" ", name.lower().replace(".", "")).strip()


def name_tokens(normalized: str) -> list[str]:
    return [part for part in _TOKEN_SPLIT.split(normalized) if part]


class NameMatcher:
    """Scores a free-text query against one name field."""

    def __init__(self, config: MatchingConfig | None = None) -> None:
        config = config or MatchingConfig()
        self._substring_floor = config.substring_floor
        self._token_floor = config.token_floor

    def score(self, query: str, candidate: str) -> MatchResult:
        if not query or not candidate:
            return NO_MATCH

        norm_query = normalize_name(query)
        norm_candidate = normalize_name(candidate)
        if norm_query == norm_candidate:
            return MatchResult(is_match=True, score=100.0, matched_part=candidate.strip())
        if not norm_query or not norm_candidate:
            return NO_MATCH

        candidate_parts = name_tokens(norm_candidate)
        main_part = max(name_tokens(norm_query), key=len, default="")
        if len(main_part) < MIN_MAIN_PART:
            return NO_MATCH

        absorbing = [p for p in candidate_parts if main_part in p or p in main_part]
        if not absorbing:
            return NO_MATCH

        if norm_query in norm_candidate:
            score = min(100.0, 100.0 * len(norm_query) / len(norm_candidate))
            if score >= self._substring_floor:
                return MatchResult(is_match=True, score=score, matched_part=candidate.strip())

        if len(main_part) >= MIN_ABSORBED_PART:
            widest = max(absorbing, key=len)
            if len(widest) >= len(main_part):
                score = min(
                    100.0,
                    100.0 * len(main_part) / max(len(norm_candidate), len(main_part)),
                )
                if score >= self._token_floor:
                    return MatchResult(is_match=True, score=score, matched_part=widest)

        return NO_MATCH


def match_record(
    record: Record,
    queries: list[str],
    matcher: NameMatcher,
) -> tuple[MatchField, str, MatchResult] | None:
    """Best (field, query, result) over every query and name field, or None.

    Ties keep the earlier field (name before father before mother) and the
    earlier query.
    """
    best: tuple[MatchField, str, MatchResult] | None = None
    for query in queries:
        for match_field in RECORD_FIELDS:
            result = matcher.score(query, record.field_value(match_field))
            if not result.is_match:
                continue
            if best is None or result.score > best[2].score:
                best = (match_field, query, result)
    return best

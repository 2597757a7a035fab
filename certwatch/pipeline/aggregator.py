"""Result aggregation across cycles and retries.

  merge_unit:  one FoundUnit per unit key, entries deduplicated by
               (record name, unit key), first occurrence kept
  append_raw:  bounded FIFO buffer of unmatched records
"""

import logging

from certwatch.core.schemas import RAW_BUFFER_CAP, FoundUnit, MatchedEntry, RawEntry

logger = logging.getLogger(__name__)


def merge_unit(
    existing: FoundUnit | None,
    incoming: list[MatchedEntry],
    unit_key: str,
    raw_count: int,
) -> FoundUnit:
    """Merge new matches for ``unit_key`` into what was already found."""
    combined = list(existing.entries) if existing is not None else []
    combined.extend(incoming)

    seen: set[tuple[str, str]] = set()
    entries: list[MatchedEntry] = []
    for entry in combined:
        key = (entry.record.name, entry.unit_key)
        if key in seen:
            continue
        seen.add(key)
        entries.append(entry)

    dropped = len(combined) - len(entries)
    if dropped:
        logger.debug("merge_unit(%s): dropped %d duplicate entries", unit_key, dropped)
    return FoundUnit(unit_key=unit_key, entries=entries, total_records=raw_count)


def append_raw(
    buffer: list[RawEntry],
    entries: list[RawEntry],
    cap: int = RAW_BUFFER_CAP,
) -> list[RawEntry]:
    """Append and keep only the most recent ``cap`` entries (oldest dropped first)."""
    combined = [*buffer, *entries]
    if len(combined) <= cap:
        return combined
    return combined[-cap:] if cap > 0 else []

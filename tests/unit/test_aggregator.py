"""Tests for result aggregation: per-unit merge and the raw record buffer."""

from certwatch.core.schemas import FoundUnit, MatchedEntry, MatchField, RawEntry, Record
from certwatch.pipeline.aggregator import append_raw, merge_unit


def _entry(
    name: str = "D.KOWSALYA",
    *,
    unit_key: str = "2004-09-15",
    score: float = 88.9,
    query: str = "kowsalya",
) -> MatchedEntry:
    return MatchedEntry(
        record=Record(name=name),
        score=score,
        matched_field=MatchField.NAME,
        matched_part=name,
        unit_key=unit_key,
        query=query,
    )


def _raw(i: int) -> RawEntry:
    return RawEntry(record=Record(name=f"PERSON {i}"), unit_key="2004-09-15")


# ---------------------------------------------------------------------------
# merge_unit
# ---------------------------------------------------------------------------


class TestMergeUnit:
    def test_new_unit(self) -> None:
        found = merge_unit(None, [_entry("A"), _entry("B")], "2004-09-15", 12)
        assert found.unit_key == "2004-09-15"
        assert [e.record.name for e in found.entries] == ["A", "B"]
        assert found.total_records == 12

    def test_duplicates_collapsed_first_kept(self) -> None:
        existing = FoundUnit(unit_key="2004-09-15", entries=[_entry("A", score=70.0)])
        found = merge_unit(existing, [_entry("A", score=100.0), _entry("B")], "2004-09-15", 3)
        assert [e.record.name for e in found.entries] == ["A", "B"]
        assert found.entries[0].score == 70.0

    def test_same_name_different_query_is_duplicate(self) -> None:
        found = merge_unit(
            None,
            [_entry("A", query="kowsalya"), _entry("A", query="d kowsalya")],
            "2004-09-15",
            1,
        )
        assert len(found.entries) == 1
        assert found.entries[0].query == "kowsalya"

    def test_total_records_reflects_latest_fetch(self) -> None:
        existing = FoundUnit(unit_key="2004-09-15", entries=[_entry("A")], total_records=5)
        found = merge_unit(existing, [], "2004-09-15", 8)
        assert found.total_records == 8
        assert len(found.entries) == 1

    def test_repeated_cycles_do_not_grow(self) -> None:
        found = merge_unit(None, [_entry("A")], "2004-09-15", 1)
        for _ in range(5):
            found = merge_unit(found, [_entry("A")], "2004-09-15", 1)
        assert len(found.entries) == 1

    def test_existing_not_mutated(self) -> None:
        existing = FoundUnit(unit_key="2004-09-15", entries=[_entry("A")])
        merge_unit(existing, [_entry("B")], "2004-09-15", 2)
        assert len(existing.entries) == 1


# ---------------------------------------------------------------------------
# append_raw
# ---------------------------------------------------------------------------


class TestAppendRaw:
    def test_under_cap(self) -> None:
        buf = append_raw([_raw(0)], [_raw(1), _raw(2)])
        assert [r.record.name for r in buf] == ["PERSON 0", "PERSON 1", "PERSON 2"]

    def test_keeps_most_recent_thousand(self) -> None:
        buf: list[RawEntry] = []
        for start in range(0, 1500, 100):
            buf = append_raw(buf, [_raw(i) for i in range(start, start + 100)])
        assert len(buf) == 1000
        assert buf[0].record.name == "PERSON 500"
        assert buf[-1].record.name == "PERSON 1499"

    def test_single_oversized_batch(self) -> None:
        buf = append_raw([], [_raw(i) for i in range(10)], cap=3)
        assert [r.record.name for r in buf] == ["PERSON 7", "PERSON 8", "PERSON 9"]

    def test_zero_cap(self) -> None:
        assert append_raw([_raw(0)], [_raw(1)], cap=0) == []

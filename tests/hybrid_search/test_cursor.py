"""Tests for search_after cursors and pagination."""

from __future__ import annotations

import pytest

from directory_common.errors import InvalidCursorError
from hybrid_search.combiner import sort_key
from hybrid_search.cursor import Cursor, paginate
from search_fakes import combined_hit


def _hits() -> list:
    scores = {"a": 3.0, "b": 2.0, "c": 2.0, "d": 1.0, "e": 0.5}
    hits = [combined_hit(doc, ("keyword_original", score, 1.0)) for doc, score in scores.items()]
    return sorted(hits, key=sort_key)


class TestCursorParse:
    """Tests for Cursor.parse."""

    def test_valid(self) -> None:
        """A [number, string] pair parses."""
        assert Cursor.parse([2, "b"]) == Cursor(2.0, "b")

    @pytest.mark.parametrize(
        "raw",
        [
            "2.0,b",
            [2.0],
            [2.0, "b", "c"],
            ["2.0", "b"],
            [True, "b"],
            [float("inf"), "b"],
            [2.0, 7],
        ],
    )
    def test_invalid(self, raw: object) -> None:
        """Anything else is an invalid cursor."""
        with pytest.raises(InvalidCursorError) as excinfo:
            Cursor.parse(raw)
        assert excinfo.value.http_status == 400

    def test_round_trip_wire_form(self) -> None:
        """to_json produces the parseable wire form."""
        cursor = Cursor(1.25, "doc-9")
        assert Cursor.parse(cursor.to_json()) == cursor


class TestPaginate:
    """Tests for paginate."""

    def test_first_page(self) -> None:
        """Without a cursor the first ``limit`` hits are returned."""
        assert [hit.doc_id for hit in paginate(_hits(), None, 2)] == ["a", "b"]

    def test_pages_do_not_overlap(self) -> None:
        """Walking with cursors visits every hit exactly once."""
        hits = _hits()
        seen: list[str] = []
        cursor = None
        while True:
            page = paginate(hits, cursor, 2)
            if not page:
                break
            seen.extend(hit.doc_id for hit in page)
            cursor = Cursor.from_hit(page[-1])
        assert seen == ["a", "b", "c", "d", "e"]

    def test_tie_broken_by_doc_id(self) -> None:
        """Equal scores continue after the cursor's doc_id."""
        page = paginate(_hits(), Cursor(2.0, "b"), 5)
        assert [hit.doc_id for hit in page] == ["c", "d", "e"]

    def test_zero_limit(self) -> None:
        """A non-positive limit yields nothing."""
        assert paginate(_hits(), None, 0) == []

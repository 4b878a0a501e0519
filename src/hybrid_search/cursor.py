"""``search_after`` cursors over the combined result order.

A cursor is the ``[score, doc_id]`` pair of the last hit a client saw. Because the
combined order is score descending with ``doc_id`` ascending as tie-breaker, "strictly
after the cursor" is a total order and consecutive pages never overlap.
"""

# [nav:section public-api]

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from directory_common.errors import InvalidCursorError
from directory_common.navmap import load_nav_metadata
from hybrid_search.types import CombinedHit

__all__ = [
    "Cursor",
    "paginate",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))


@dataclass(frozen=True, slots=True)
# [nav:anchor Cursor]
class Cursor:
    """Position in the combined order."""

    score: float
    doc_id: str

    @classmethod
    def parse(cls, raw: object) -> Cursor:
        """Validate a client-supplied ``search_after`` value.

        Parameters
        ----------
        raw : object
            Decoded JSON value.

        Returns
        -------
        Cursor
            Parsed cursor.

        Raises
        ------
        InvalidCursorError
            Unless ``raw`` is a two-element array of a finite number and a string.
        """
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            msg = "search_after must be a [score, doc_id] array"
            raise InvalidCursorError(msg, cursor=raw)
        score, doc_id = raw
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            msg = "search_after[0] must be a number"
            raise InvalidCursorError(msg, cursor=list(raw))
        if not math.isfinite(score):
            msg = "search_after[0] must be finite"
            raise InvalidCursorError(msg, cursor=list(raw))
        if not isinstance(doc_id, str):
            msg = "search_after[1] must be a string"
            raise InvalidCursorError(msg, cursor=list(raw))
        return cls(float(score), doc_id)

    @classmethod
    def from_hit(cls, hit: CombinedHit) -> Cursor:
        """Return the cursor positioned at ``hit``."""
        return cls(hit.total_score, hit.doc_id)

    def is_before(self, hit: CombinedHit) -> bool:
        """Return ``True`` when ``hit`` sorts strictly after this cursor."""
        if hit.total_score != self.score:
            return hit.total_score < self.score
        return hit.doc_id > self.doc_id

    def to_json(self) -> list[float | str]:
        """Return the wire form ``[score, doc_id]``."""
        return [self.score, self.doc_id]


# [nav:anchor paginate]
def paginate(
    hits: Sequence[CombinedHit], cursor: Cursor | None, limit: int
) -> list[CombinedHit]:
    """Return up to ``limit`` hits that follow ``cursor`` in combined order.

    ``hits`` must already be in combined order.
    """
    if limit <= 0:
        return []
    if cursor is None:
        return list(hits[:limit])
    page: list[CombinedHit] = []
    for hit in hits:
        if cursor.is_before(hit):
            page.append(hit)
            if len(page) == limit:
                break
    return page

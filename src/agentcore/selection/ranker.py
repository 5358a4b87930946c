"""Turns chunk-level similarity scores into a bounded list of selected items.

A multi-chunk item counts once, with its best chunk's score. Selection keeps
every item at or above the include threshold, then tops up with the best of
the rest until top_n items are chosen.
"""

from __future__ import annotations

from typing import Sequence

from .models import ContextItem, ItemKey, ScoredItem, SelectionConfig


class RelevanceRanker:
    """Groups and thresholds chunk scores."""

    def rank(
        self,
        chunk_scores: Sequence[tuple[ContextItem, float]],
        config: SelectionConfig,
    ) -> list[ScoredItem]:
        """Select items from (owning item, chunk score) pairs.

        Only the top_k chunks by raw score are considered, and only chunks
        with positive similarity. Result is ordered threshold items first,
        each group by descending score.
        """
        top_chunks = sorted(chunk_scores, key=lambda pair: pair[1], reverse=True)[: config.top_k]

        best: dict[ItemKey, ScoredItem] = {}
        for item, score in top_chunks:
            if score <= 0:
                continue
            existing = best.get(item.key)
            if existing is None or score > existing.score:
                best[item.key] = ScoredItem(key=item.key, item=item, score=score)

        ranked = sorted(best.values(), key=lambda s: (s.score, s.key), reverse=True)
        above = [s for s in ranked if s.score >= config.include_score]
        below = [s for s in ranked if s.score < config.include_score]
        return above + below[: max(0, config.top_n - len(above))]

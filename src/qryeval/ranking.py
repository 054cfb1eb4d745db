"""Ranked lists of (docid, score) entries."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import NamedTuple

import numpy as np


class ScoreEntry(NamedTuple):
    docid: int
    score: float


class ScoreList:
    """
    A list of scored documents.

    ``sort`` orders entries by descending score; equal scores are ordered by
    ascending internal docid so rankings are reproducible.
    """

    def __init__(self, entries: Iterable[tuple[int, float]] = ()):
        self._entries = [ScoreEntry(int(docid), float(score)) for docid, score in entries]

    def add(self, docid: int, score: float) -> None:
        self._entries.append(ScoreEntry(int(docid), float(score)))

    def sort(self) -> None:
        if not self._entries:
            return
        docids = np.array([e.docid for e in self._entries], dtype=np.int64)
        scores = np.array([e.score for e in self._entries], dtype=np.float64)
        # lexsort sorts by the last key first
        order = np.lexsort((docids, -scores))
        self._entries = [self._entries[i] for i in order]

    def truncate(self, length: int) -> None:
        del self._entries[max(length, 0):]

    def docid(self, i: int) -> int:
        return self._entries[i].docid

    def score(self, i: int) -> float:
        return self._entries[i].score

    def docids(self) -> list[int]:
        return [e.docid for e in self._entries]

    def as_dict(self) -> dict[int, float]:
        return {e.docid: e.score for e in self._entries}

    def __getitem__(self, i: int) -> ScoreEntry:
        return self._entries[i]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ScoreEntry]:
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"ScoreList({self._entries!r})"

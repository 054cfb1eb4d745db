"""
Posting lists and forward-only cursors.

An inverted list holds one posting per document, sorted by internal docid.
Each posting carries the strictly increasing positions at which the term (or,
for proximity operators, the matched window) occurs in the document.

Cursors never move backwards: every advance either keeps the cursor where it
is or moves it strictly forward, which is what lets the operators in
``qryeval.operators`` merge several lists in a single pass.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Posting:
    """One document's entry in an inverted list."""

    docid: int
    positions: tuple[int, ...]

    @property
    def tf(self) -> int:
        return len(self.positions)


@dataclass
class InvertedList:
    """
    Postings for a single term (or derived proximity expression) in one field.

    Attributes:
        field: Document field the positions refer to (e.g. ``"body"``).
        postings: Postings sorted strictly ascending by docid.
    """

    field: str
    postings: list[Posting] = field(default_factory=list)

    @property
    def df(self) -> int:
        """Number of documents that contain at least one occurrence."""
        return len(self.postings)

    @property
    def ctf(self) -> int:
        """Total number of occurrences in the collection."""
        return sum(posting.tf for posting in self.postings)

    def append_posting(self, docid: int, positions: Sequence[int]) -> None:
        """Append a posting; docids must arrive in ascending order."""
        if self.postings and docid <= self.postings[-1].docid:
            raise ValueError(
                f"Postings must be appended in ascending docid order "
                f"({docid} after {self.postings[-1].docid})."
            )
        self.postings.append(Posting(docid, tuple(positions)))

    def cursor(self) -> PostingCursor:
        return PostingCursor(self)

    def __len__(self) -> int:
        return len(self.postings)

    def __iter__(self) -> Iterator[Posting]:
        return iter(self.postings)


class PostingCursor:
    """
    Forward-only iterator over an inverted list.

    Two nested positions are tracked: the current posting (document) and the
    current location inside that posting. Moving to another document resets
    the location cursor to the document's first position.
    """

    def __init__(self, inverted_list: InvertedList):
        self.inverted_list = inverted_list
        self._doc_index = 0
        self._loc_index = 0

    # ----- Document cursor -----

    def has_doc(self) -> bool:
        return self._doc_index < len(self.inverted_list.postings)

    def doc(self) -> int:
        return self.inverted_list.postings[self._doc_index].docid

    def posting(self) -> Posting:
        return self.inverted_list.postings[self._doc_index]

    def advance_past(self, docid: int) -> None:
        """Move to the first posting whose docid is strictly greater than ``docid``."""
        postings = self.inverted_list.postings
        start = self._doc_index
        while self._doc_index < len(postings) and postings[self._doc_index].docid <= docid:
            self._doc_index += 1
        if self._doc_index != start:
            self._loc_index = 0

    def advance_to(self, docid: int) -> None:
        """Move to the first posting whose docid is at least ``docid``."""
        self.advance_past(docid - 1)

    # ----- Location cursor -----

    def has_loc(self) -> bool:
        return self.has_doc() and self._loc_index < len(self.posting().positions)

    def loc(self) -> int:
        return self.posting().positions[self._loc_index]

    def advance_loc(self) -> None:
        self._loc_index += 1

    def advance_loc_past(self, position: int) -> None:
        """Move to the first location in the current posting greater than ``position``."""
        positions = self.posting().positions
        while self._loc_index < len(positions) and positions[self._loc_index] <= position:
            self._loc_index += 1

"""
Index store contract and an in-memory implementation.

The query operators only talk to the index through ``IndexStore``: document
id mapping, per-field lengths and collection statistics, per-term postings,
per-document term vectors, and document attributes. Any object providing
these (read-only) methods can back the engine.

``InMemoryIndex`` builds the same statistics from tokenized documents. Term
vectors are rows of a sparse document-term matrix per field.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Protocol

import numpy as np
from scipy.sparse import csr_matrix

from qryeval.postings import InvertedList

TEXT_FIELDS = ("body", "title", "url", "inlink")


def tokenize(text: str) -> list[str]:
    """Tokenizes the input text into a list of lowercase terms."""
    return re.findall(r"\w+", text.lower())


# =============================================================================
# Term vectors
# =============================================================================


@dataclass(frozen=True, eq=False)
class TermVector:
    """
    The terms of one field of one document.

    Attributes:
        stems: Distinct terms of the field, in vocabulary order.
        freqs: Frequency of each stem in the document.
        dfs: Collection document frequency of each stem.
    """

    stems: tuple[str, ...]
    freqs: np.ndarray
    dfs: np.ndarray

    @cached_property
    def _lookup(self) -> dict[str, int]:
        return {stem: i for i, stem in enumerate(self.stems)}

    def index_of(self, stem: str) -> int | None:
        return self._lookup.get(stem)

    def freq(self, stem: str) -> int:
        i = self._lookup.get(stem)
        return 0 if i is None else int(self.freqs[i])

    def df(self, stem: str) -> int:
        i = self._lookup.get(stem)
        return 0 if i is None else int(self.dfs[i])

    def __contains__(self, stem: object) -> bool:
        return stem in self._lookup

    def __len__(self) -> int:
        return len(self.stems)

    def __iter__(self) -> Iterator[tuple[str, int]]:
        return ((stem, int(freq)) for stem, freq in zip(self.stems, self.freqs))


# =============================================================================
# Protocol for index stores (duck typing)
# =============================================================================


class IndexStore(Protocol):
    """Read-only index operations required by the query operators."""

    def num_docs(self) -> int: ...

    def doc_count(self, field: str) -> int: ...

    def field_length(self, field: str, docid: int) -> int: ...

    def sum_of_field_lengths(self, field: str) -> int: ...

    def total_term_freq(self, field: str, term: str) -> int: ...

    def doc_freq(self, field: str, term: str) -> int: ...

    def postings(self, field: str, term: str) -> InvertedList: ...

    def term_vector(self, docid: int, field: str) -> TermVector: ...

    def external_docid(self, docid: int) -> str: ...

    def internal_docid(self, external_id: str) -> int: ...

    def attribute(self, name: str, docid: int) -> str | None: ...


# =============================================================================
# In-memory index
# =============================================================================


class _FieldIndex:
    """Postings, lengths and a sparse document-term matrix for one field."""

    def __init__(self, name: str, documents: Sequence[Sequence[str]]):
        self.name = name
        self.vocabulary: dict[str, int] = {}
        self.postings: dict[str, InvertedList] = {}
        self.doc_lengths = np.array([len(doc) for doc in documents], dtype=np.int64)

        rows: list[int] = []
        cols: list[int] = []
        data: list[int] = []
        for docid, tokens in enumerate(documents):
            positions: dict[str, list[int]] = {}
            for position, term in enumerate(tokens):
                positions.setdefault(term, []).append(position)
            for term, locs in positions.items():
                term_id = self.vocabulary.setdefault(term, len(self.vocabulary))
                self.postings.setdefault(term, InvertedList(name)).append_posting(docid, locs)
                rows.append(docid)
                cols.append(term_id)
                data.append(len(locs))

        self.stems = tuple(self.vocabulary)
        self.tf_matrix = csr_matrix(
            (
                np.array(data, dtype=np.int64),
                (np.array(rows, dtype=np.int64), np.array(cols, dtype=np.int64)),
            ),
            shape=(len(documents), len(self.vocabulary)),
        )
        self.df_array = np.bincount(
            np.array(cols, dtype=np.int64), minlength=len(self.vocabulary)
        )
        self.ctf_array = np.asarray(self.tf_matrix.sum(axis=0)).ravel()

    @cached_property
    def doc_count(self) -> int:
        """Number of documents with a non-empty field."""
        return int(np.count_nonzero(self.doc_lengths))

    @cached_property
    def total_length(self) -> int:
        return int(self.doc_lengths.sum())


class InMemoryIndex:
    """
    An ``IndexStore`` built from tokenized, fielded documents.

    Args:
        documents: One mapping per document from field name to its tokens.
        ids: External document ids (default: the document's position as a string).
        attributes: Optional per-document attribute mappings (e.g. ``PageRank``).
        fields: Fields to index; fields absent from a document are empty.
    """

    def __init__(
        self,
        documents: Sequence[Mapping[str, Sequence[str]]],
        ids: Sequence[str] | None = None,
        attributes: Sequence[Mapping[str, str]] | None = None,
        fields: Sequence[str] = TEXT_FIELDS,
    ):
        self.N = len(documents)
        self.ids = list(ids) if ids is not None else [str(i) for i in range(self.N)]
        if len(self.ids) != self.N:
            raise ValueError("Number of ids does not match number of documents.")
        self._id_to_idx = {doc_id: i for i, doc_id in enumerate(self.ids)}
        self._attributes = [dict(a) for a in attributes] if attributes else [{} for _ in range(self.N)]

        names = list(fields) + sorted({f for doc in documents for f in doc} - set(fields))
        self._fields = {
            name: _FieldIndex(name, [doc.get(name, ()) for doc in documents]) for name in names
        }

    @classmethod
    def from_texts(
        cls,
        documents: Sequence[Mapping[str, str]],
        ids: Sequence[str] | None = None,
        attributes: Sequence[Mapping[str, str]] | None = None,
    ) -> InMemoryIndex:
        tokenized = [{name: tokenize(text) for name, text in doc.items()} for doc in documents]
        return cls(tokenized, ids=ids, attributes=attributes)

    @classmethod
    def from_jsonl(cls, path: str | Path) -> InMemoryIndex:
        """
        Load a corpus of JSON lines ``{"id": ..., "fields": {...}, "attributes": {...}}``.
        """
        ids, documents, attributes = [], [], []
        with open(path, encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                record = json.loads(line)
                ids.append(str(record["id"]))
                documents.append(record.get("fields", {}))
                attributes.append(
                    {name: str(value) for name, value in record.get("attributes", {}).items()}
                )
        return cls.from_texts(documents, ids=ids, attributes=attributes)

    def _field(self, field: str) -> _FieldIndex:
        try:
            return self._fields[field]
        except KeyError:
            raise KeyError(f"Unknown field: {field}") from None

    # ----- Collection statistics -----

    def num_docs(self) -> int:
        return self.N

    def doc_count(self, field: str) -> int:
        return self._field(field).doc_count

    def field_length(self, field: str, docid: int) -> int:
        return int(self._field(field).doc_lengths[docid])

    def sum_of_field_lengths(self, field: str) -> int:
        return self._field(field).total_length

    def total_term_freq(self, field: str, term: str) -> int:
        f = self._field(field)
        term_id = f.vocabulary.get(term)
        return 0 if term_id is None else int(f.ctf_array[term_id])

    def doc_freq(self, field: str, term: str) -> int:
        f = self._field(field)
        term_id = f.vocabulary.get(term)
        return 0 if term_id is None else int(f.df_array[term_id])

    # ----- Per-term and per-document access -----

    def postings(self, field: str, term: str) -> InvertedList:
        return self._field(field).postings.get(term, InvertedList(field))

    def term_vector(self, docid: int, field: str) -> TermVector:
        f = self._field(field)
        matrix = f.tf_matrix
        start, end = matrix.indptr[docid], matrix.indptr[docid + 1]
        term_ids = matrix.indices[start:end]
        order = np.argsort(term_ids)
        term_ids = term_ids[order]
        return TermVector(
            stems=tuple(f.stems[t] for t in term_ids),
            freqs=matrix.data[start:end][order],
            dfs=f.df_array[term_ids],
        )

    def external_docid(self, docid: int) -> str:
        return self.ids[docid]

    def internal_docid(self, external_id: str) -> int:
        try:
            return self._id_to_idx[external_id]
        except KeyError:
            raise KeyError(f"Unknown external document id: {external_id}") from None

    def attribute(self, name: str, docid: int) -> str | None:
        return self._attributes[docid].get(name)

    def __len__(self) -> int:
        return self.N

"""
TREC-style text formats: query files, intents files, run files, and qrels.

Run file rows are ``qid Q0 externalId rank score tag``. A query with no
results is written as a single ``qid Q0 dummy 1 0 tag`` row, which readers
skip.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from qryeval.errors import FormatError
from qryeval.index import IndexStore
from qryeval.ranking import ScoreList

DEFAULT_RUN_TAG = "fubar"
DUMMY_DOCID = "dummy"


def qid_sort_key(qid: str) -> tuple[int, int | str]:
    """Numeric query ids in numeric order, then any others lexicographically."""
    return (0, int(qid)) if qid.isdigit() else (1, qid)


def split_intent_qid(qid: str) -> tuple[str, int | None]:
    """``"157.2"`` -> ``("157", 2)``; ``"157"`` -> ``("157", None)``."""
    base, dot, intent = qid.partition(".")
    if not dot:
        return qid, None
    try:
        return base, int(intent)
    except ValueError:
        raise FormatError(f"Invalid intent id in query id {qid!r}") from None


# =============================================================================
# Query and intents files
# =============================================================================


def _split_query_line(line: str, path: str | Path, lineno: int) -> tuple[str, str]:
    qid, sep, query = line.partition(":")
    if not sep:
        raise FormatError(f"{path}:{lineno}: syntax error, missing ':' in query line {line!r}")
    return qid.strip(), query.strip()


def read_query_file(path: str | Path) -> list[tuple[str, str]]:
    """Read ``qid: query`` lines, in file order."""
    queries = []
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            if line.strip():
                queries.append(_split_query_line(line.rstrip("\n"), path, lineno))
    return queries


def read_intents_file(path: str | Path) -> dict[str, dict[int, str]]:
    """Read ``qid.intent: query`` lines into qid -> intent id -> query."""
    intents: dict[str, dict[int, str]] = defaultdict(dict)
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            qid, query = _split_query_line(line.rstrip("\n"), path, lineno)
            base, intent = split_intent_qid(qid)
            if intent is None:
                raise FormatError(f"{path}:{lineno}: missing '.' in intent id {qid!r}")
            intents[base][intent] = query
    return dict(intents)


def append_expansion_query(path: str | Path, qid: str, query: str) -> None:
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"{qid}: {query}\n")


# =============================================================================
# Run files
# =============================================================================


@dataclass(frozen=True)
class RunRow:
    qid: str
    external_id: str
    rank: int
    score: float


def write_ranking(
    out: TextIO,
    qid: str,
    ranking: ScoreList,
    index: IndexStore,
    output_length: int,
    tag: str = DEFAULT_RUN_TAG,
) -> None:
    """Write the first ``output_length`` entries of an already sorted ranking."""
    if len(ranking) == 0:
        out.write(f"{qid} Q0 {DUMMY_DOCID} 1 0 {tag}\n")
        return
    for rank, entry in enumerate(ranking, start=1):
        if rank > output_length:
            break
        out.write(f"{qid} Q0 {index.external_docid(entry.docid)} {rank} {entry.score!r} {tag}\n")


def append_ranking(
    path: str | Path,
    qid: str,
    ranking: ScoreList,
    index: IndexStore,
    output_length: int,
    tag: str = DEFAULT_RUN_TAG,
) -> None:
    with open(path, "a", encoding="utf-8") as f:
        write_ranking(f, qid, ranking, index, output_length, tag)


def read_run_rows(path: str | Path) -> Iterator[RunRow]:
    """Yield the rows of a run file, skipping blank lines and dummy rows."""
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            parts = line.split()
            if not parts:
                continue
            if len(parts) < 5:
                raise FormatError(f"{path}:{lineno}: expected 'qid Q0 docid rank score tag', got {line!r}")
            if parts[2] == DUMMY_DOCID:
                continue
            try:
                yield RunRow(parts[0], parts[2], int(parts[3]), float(parts[4]))
            except ValueError:
                raise FormatError(f"{path}:{lineno}: invalid rank or score in {line!r}") from None


def _internal_docid(index: IndexStore, external_id: str, path: str | Path) -> int:
    try:
        return index.internal_docid(external_id)
    except KeyError:
        raise FormatError(f"{path}: unknown document {external_id!r}") from None


def read_ranking_file(path: str | Path, index: IndexStore) -> dict[str, ScoreList]:
    """Read a run file into qid -> ScoreList, keeping file order within each query."""
    rankings: dict[str, ScoreList] = defaultdict(ScoreList)
    for row in read_run_rows(path):
        rankings[row.qid].add(_internal_docid(index, row.external_id, path), row.score)
    return dict(rankings)


def read_intent_ranking_file(
    path: str | Path, index: IndexStore
) -> tuple[dict[str, ScoreList], dict[str, dict[int, ScoreList]]]:
    """
    Read a run file holding base rankings (``qid``) and intent rankings (``qid.intent``).

    Returns:
        (qid -> base ranking, qid -> intent id -> intent ranking)
    """
    base: dict[str, ScoreList] = defaultdict(ScoreList)
    intents: dict[str, dict[int, ScoreList]] = defaultdict(lambda: defaultdict(ScoreList))
    for row in read_run_rows(path):
        docid = _internal_docid(index, row.external_id, path)
        qid, intent = split_intent_qid(row.qid)
        if intent is None:
            base[qid].add(docid, row.score)
        else:
            intents[qid][intent].add(docid, row.score)
    return dict(base), {qid: dict(by_intent) for qid, by_intent in intents.items()}


def read_run(path: str | Path) -> dict[str, list[str]]:
    """Read a run file into qid -> external ids ordered by descending score."""
    rows: dict[str, list[RunRow]] = defaultdict(list)
    for row in read_run_rows(path):
        rows[row.qid].append(row)
    return {
        qid: [row.external_id for row in sorted(qrows, key=lambda r: (-r.score, r.rank))]
        for qid, qrows in rows.items()
    }


# =============================================================================
# Relevance judgments
# =============================================================================


def read_qrels(path: str | Path) -> dict[str, dict[str, float]]:
    """Read ``qid iteration externalId grade`` lines into qid -> external id -> grade."""
    qrels: dict[str, dict[str, float]] = defaultdict(dict)
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            parts = line.split()
            if not parts:
                continue
            if len(parts) < 4:
                raise FormatError(f"{path}:{lineno}: expected 'qid 0 docid grade', got {line!r}")
            try:
                qrels[parts[0]][parts[2]] = float(parts[3])
            except ValueError:
                raise FormatError(f"{path}:{lineno}: invalid grade in {line!r}") from None
    return dict(qrels)

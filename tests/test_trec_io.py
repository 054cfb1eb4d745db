import io

import pytest

from qryeval.errors import FormatError
from qryeval.ranking import ScoreList
from qryeval.trec_io import (
    append_ranking,
    qid_sort_key,
    read_intent_ranking_file,
    read_intents_file,
    read_qrels,
    read_query_file,
    read_ranking_file,
    read_run,
    split_intent_qid,
    write_ranking,
)


def test_write_ranking(index):
    ranking = ScoreList([(2, 1.5), (0, 0.25), (4, 0.1)])
    out = io.StringIO()
    write_ranking(out, "7", ranking, index, output_length=2, tag="run1")
    assert out.getvalue() == "7 Q0 d2 1 1.5 run1\n7 Q0 d0 2 0.25 run1\n"


def test_empty_ranking_writes_dummy_row(index):
    out = io.StringIO()
    write_ranking(out, "7", ScoreList(), index, output_length=10)
    assert out.getvalue() == "7 Q0 dummy 1 0 fubar\n"


def test_ranking_file_round_trip(index, tmp_path):
    path = tmp_path / "run.teIn"
    first = ScoreList([(1, 2.0), (3, 1.0 / 3.0)])
    append_ranking(path, "10", first, index, output_length=100)
    append_ranking(path, "11", ScoreList(), index, output_length=100)
    append_ranking(path, "12", ScoreList([(5, 0.5)]), index, output_length=100)

    rankings = read_ranking_file(path, index)
    assert set(rankings) == {"10", "12"}
    assert list(rankings["10"]) == list(first)
    assert read_run(path) == {"10": ["d1", "d3"], "12": ["d5"]}


def test_unknown_document_is_format_error(index, tmp_path):
    path = tmp_path / "run.teIn"
    path.write_text("1 Q0 nowhere 1 3.0 fubar\n")
    with pytest.raises(FormatError, match="nowhere"):
        read_ranking_file(path, index)


@pytest.mark.parametrize("line", ["1 Q0 d1\n", "1 Q0 d1 one 3.0 fubar\n"])
def test_malformed_run_line(index, tmp_path, line):
    path = tmp_path / "run.teIn"
    path.write_text(line)
    with pytest.raises(FormatError):
        read_ranking_file(path, index)


def test_intent_ranking_file(index, tmp_path):
    path = tmp_path / "initial.teIn"
    path.write_text(
        "5 Q0 d0 1 9.0 x\n"
        "5 Q0 d1 2 8.0 x\n"
        "5.1 Q0 d0 1 0.9 x\n"
        "5.2 Q0 d1 1 0.8 x\n"
        "5.2 Q0 d2 2 0.7 x\n"
    )
    base, intents = read_intent_ranking_file(path, index)
    assert base["5"].as_dict() == {0: 9.0, 1: 8.0}
    assert sorted(intents["5"]) == [1, 2]
    assert intents["5"][2].as_dict() == {1: 0.8, 2: 0.7}


def test_read_query_file(tmp_path):
    path = tmp_path / "queries.txt"
    path.write_text("10: apple pie\n\n2:#and( a b )\n")
    assert read_query_file(path) == [("10", "apple pie"), ("2", "#and( a b )")]

    path.write_text("10 apple pie\n")
    with pytest.raises(FormatError, match="missing ':'"):
        read_query_file(path)


def test_read_intents_file(tmp_path):
    path = tmp_path / "intents.txt"
    path.write_text("3.1: red apple\n3.2: green apple\n4.1: pear\n")
    assert read_intents_file(path) == {"3": {1: "red apple", 2: "green apple"}, "4": {1: "pear"}}

    path.write_text("3: red apple\n")
    with pytest.raises(FormatError):
        read_intents_file(path)


def test_read_qrels(tmp_path):
    path = tmp_path / "qrels.txt"
    path.write_text("1 0 d1 2\n1 0 d2 0\n2 0 d3 1\n")
    assert read_qrels(path) == {"1": {"d1": 2.0, "d2": 0.0}, "2": {"d3": 1.0}}

    path.write_text("1 0 d1\n")
    with pytest.raises(FormatError):
        read_qrels(path)


def test_split_intent_qid():
    assert split_intent_qid("157.2") == ("157", 2)
    assert split_intent_qid("157") == ("157", None)
    with pytest.raises(FormatError):
        split_intent_qid("157.x")


def test_qid_sort_key():
    assert sorted(["10", "b", "2", "a"], key=qid_sort_key) == ["2", "10", "a", "b"]

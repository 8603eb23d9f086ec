import gzip
import io
import itertools
import re

import pytest

from houndsearch.grep import (
    GrepMatch,
    count_lines,
    first_n_lines,
    grep_file,
    grep_lines,
    grep_with_context,
    last_n_lines,
)

SUBJ_A = b"first\nsecond\nthird\nfourth\nfifth\nsixth"
SUBJ_B = b"\n"
SUBJ_C = b"\n\n\n\nfoo\nbar\n\nbaz"


def _found(data, pattern, context=0):
    return [
        (m.line.decode(), m.line_number)
        for m in grep_with_context(data, re.compile(pattern), context)
    ]


@pytest.mark.parametrize(
    "data, n, expected",
    [
        (SUBJ_A, 1, ["first"]),
        (SUBJ_A, 2, ["first", "second"]),
        (SUBJ_A, 6, ["first", "second", "third", "fourth", "fifth", "sixth"]),
        (SUBJ_B, 1, [""]),
        (SUBJ_B, 2, [""]),
        (SUBJ_C, 5, ["", "", "", "", "foo"]),
    ],
)
def test_first_n_lines(data, n, expected):
    assert [line.decode() for line in first_n_lines(data, n)] == expected


@pytest.mark.parametrize(
    "data, n, expected",
    [
        (SUBJ_A, 1, ["sixth"]),
        (SUBJ_A, 2, ["fifth", "sixth"]),
        (SUBJ_A, 6, ["first", "second", "third", "fourth", "fifth", "sixth"]),
        (SUBJ_B, 1, [""]),
        (SUBJ_B, 2, [""]),
        (SUBJ_C, 5, ["", "foo", "bar", "", "baz"]),
    ],
)
def test_last_n_lines(data, n, expected):
    assert [line.decode() for line in last_n_lines(data, n)] == expected


def test_n_lines_of_empty_input_or_zero_count():
    assert first_n_lines(b"", 3) == []
    assert last_n_lines(b"", 3) == []
    assert first_n_lines(SUBJ_A, 0) == []
    assert last_n_lines(SUBJ_A, 0) == []


def test_count_lines():
    assert count_lines(SUBJ_A) == 5
    assert count_lines(SUBJ_B) == 1
    assert count_lines(SUBJ_C) == 7
    assert count_lines(b"") == 0


def test_grep_single_letter():
    assert _found(SUBJ_A, b"s") == [("first", 1), ("second", 2), ("sixth", 6)]


def test_grep_caret_on_single_newline():
    assert _found(SUBJ_B, b"^") == [("", 1)]


def test_grep_caret_matches_every_line():
    assert _found(SUBJ_C, b"^") == [
        ("", 1),
        ("", 2),
        ("", 3),
        ("", 4),
        ("foo", 5),
        ("bar", 6),
        ("", 7),
        ("baz", 8),
    ]


def test_grep_end_anchor():
    assert _found(SUBJ_A, b"th$") == [("sixth", 6)]


@pytest.mark.parametrize(
    "pattern, context, before, after",
    [
        (b"third", 2, [["first", "second"]], [["fourth", "fifth"]]),
        (b"third", 3, [["first", "second"]], [["fourth", "fifth", "sixth"]]),
        (b"first", 2, [[]], [["second", "third"]]),
    ],
)
def test_context(pattern, context, before, after):
    matches = list(grep_with_context(SUBJ_A, re.compile(pattern), context))
    assert [[line.decode() for line in m.before] for m in matches] == before
    assert [[line.decode() for line in m.after] for m in matches] == after


def test_grep_can_stop_early():
    matches = list(itertools.islice(grep_with_context(SUBJ_A, re.compile(b"s")), 1))
    assert matches == [GrepMatch(line=b"first", line_number=1)]


def test_grep_without_match():
    assert _found(SUBJ_A, b"zzz") == []


def test_grep_file_reads_gzip(tmp_path):
    path = tmp_path / "data.gz"
    with gzip.open(path, "wb") as handle:
        handle.write(SUBJ_A)
    matches = list(grep_file(str(path), re.compile(b"(?m)^f"), 1))
    assert [(m.line, m.line_number) for m in matches] == [
        (b"first", 1),
        (b"fourth", 4),
        (b"fifth", 5),
    ]
    assert matches[1].before == [b"third"]
    assert matches[1].after == [b"fifth"]


def test_grep_lines_from_stream():
    matches = list(grep_lines(io.BytesIO(SUBJ_A), re.compile(b"s")))
    assert [(m.line, m.line_number) for m in matches] == [
        (b"first", 1),
        (b"second", 2),
        (b"sixth", 6),
    ]


def test_grep_lines_multiline_anchor():
    matches = list(grep_lines(io.BytesIO(SUBJ_A), re.compile(b"(?m)th$")))
    assert [(m.line, m.line_number) for m in matches] == [
        (b"fourth", 4),
        (b"fifth", 5),
        (b"sixth", 6),
    ]


def test_grep_lines_agrees_with_context_grep():
    data = b"alpha\nbeta\ngamma\ndelta\nalphabet\n"
    regex = re.compile(b"(?m)a$")
    streamed = [(m.line, m.line_number) for m in grep_lines(io.BytesIO(data), regex)]
    whole = [(m.line, m.line_number) for m in grep_with_context(data, regex)]
    assert streamed == whole == [(b"alpha", 1), (b"beta", 2), (b"gamma", 3), (b"delta", 4)]
import json
import os

import pytest

from houndsearch.config import Config, Repo
from houndsearch.index import IndexOptions, build
from houndsearch.searcher import (
    hash_for,
    make_all,
    new_searcher,
    next_index_dir,
    vcs_dir_for,
)
from houndsearch.vcs import VcsError


@pytest.fixture
def source(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "main.txt").write_text("first line\nhello world\nlast line\n")
    (src / "other.txt").write_text("nothing here\n")
    return str(src)


@pytest.fixture
def dbpath(tmp_path):
    db = tmp_path / "db"
    db.mkdir()
    return str(db)


def _repo(src, **kwargs):
    values = dict(url=src, vcs="nonvcs", ms_between_polls=60000)
    values.update(kwargs)
    return Repo(**values)


def test_hash_for_is_sha1_hex():
    assert hash_for("abc") == "a9993e364706816aba3e25717850c26c9cd0d89d"


def test_vcs_dir_for_uses_url_hash():
    repo = Repo(url="https://example.com/repo.git")
    assert vcs_dir_for(repo) == "vcs-" + hash_for("https://example.com/repo.git")


def test_next_index_dir_is_fresh_and_inside_dbpath(dbpath):
    first = next_index_dir(dbpath)
    second = next_index_dir(dbpath)
    assert os.path.dirname(first) == dbpath
    assert os.path.basename(first).startswith("idx-")
    assert first != second


def test_new_searcher_searches_and_stops(source, dbpath):
    repo = _repo(source)
    searcher = new_searcher(dbpath, "sample", repo)
    try:
        result = searcher.search("hello")
        assert [m.filename for m in result.matches] == ["main.txt"]
        assert result.matches[0].matches[0].line == "hello world"
        assert result.matches[0].matches[0].line_number == 2
        assert result.revision == "nonvcs"
        assert searcher.path == os.path.join(dbpath, vcs_dir_for(repo))
        assert json.loads(searcher.get_excluded_files()) == []
    finally:
        searcher.stop()
    assert searcher.wait(10) is True


def test_update_respects_push_setting(source, dbpath):
    searcher = new_searcher(dbpath, "plain", _repo(source))
    try:
        assert searcher.update() is False
    finally:
        searcher.stop()
        searcher.wait(10)

    pushed = new_searcher(dbpath, "pushed", _repo(source, enable_push_updates=True))
    try:
        assert pushed.update() is True
        assert pushed.search("hello").files_with_match == 1
    finally:
        pushed.stop()
    assert pushed.wait(10) is True


def test_poller_ends_when_all_updates_disabled(source, dbpath):
    repo = _repo(source, enable_poll_updates=False, enable_push_updates=False)
    searcher = new_searcher(dbpath, "static", repo)
    assert searcher.wait(10) is True


def test_new_searcher_unknown_vcs_raises(source, dbpath):
    with pytest.raises(VcsError):
        new_searcher(dbpath, "bad", _repo(source, vcs="no-such-vcs"))


def test_make_all_reports_errors_and_removes_stale_indexes(source, dbpath):
    stale = os.path.join(dbpath, "idx-stale")
    os.mkdir(stale)
    cfg = Config(
        db_path=dbpath,
        repos={"good": _repo(source), "bad": _repo(source, vcs="no-such-vcs")},
        max_concurrent_indexers=2,
    )
    searchers, errors = make_all(cfg)
    try:
        assert set(searchers) == {"good"}
        assert set(errors) == {"bad"}
        assert isinstance(errors["bad"], VcsError)
        assert not os.path.exists(stale)
        assert searchers["good"].search("hello").files_with_match == 1
    finally:
        for searcher in searchers.values():
            searcher.stop()
            searcher.wait(10)


def test_make_all_reuses_matching_index(source, dbpath):
    existing = os.path.join(dbpath, "idx-0001")
    build(IndexOptions(), existing, source, source, "nonvcs")
    cfg = Config(db_path=dbpath, repos={"good": _repo(source)}, max_concurrent_indexers=1)
    searchers, errors = make_all(cfg)
    try:
        assert errors == {}
        assert os.path.isdir(existing)
        idx_dirs = sorted(name for name in os.listdir(dbpath) if name.startswith("idx-"))
        assert idx_dirs == ["idx-0001"]
        assert searchers["good"].search("last").matches[0].filename == "main.txt"
    finally:
        for searcher in searchers.values():
            searcher.stop()
            searcher.wait(10)
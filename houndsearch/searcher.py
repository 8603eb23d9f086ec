"""Searchers: one live index per repository, kept current by a poller thread."""

from __future__ import annotations

import gc
import glob
import hashlib
import logging
import os
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .config import Config, Repo
from .index import (
    EXCLUDED_FILES_FILENAME,
    Index,
    IndexOptions,
    IndexRef,
    SearchOptions,
    SearchResponse,
    build,
    open_index,
    read,
)
from .vcs import WorkDir, new_workdir

log = logging.getLogger(__name__)

_NON_VCS = "nonvcs"


@dataclass
class _FoundRefs:
    """Index directories found in the dbpath at startup that may be reused."""

    refs: list[IndexRef] = field(default_factory=list)
    _claimed: set[int] = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def find(self, url: str, rev: str) -> IndexRef | None:
        return next((ref for ref in self.refs if ref.url == url and ref.rev == rev), None)

    def claim(self, ref: IndexRef) -> None:
        with self._lock:
            self._claimed.add(id(ref))

    def remove_unclaimed(self) -> None:
        with self._lock:
            for ref in self.refs:
                if id(ref) not in self._claimed:
                    ref.remove()


class Searcher:
    """Serves searches on a repository's current index and keeps it updated."""

    def __init__(self, idx: Index, repo: Repo, path: str = "") -> None:
        self.repo = repo
        self.path = path
        self._idx = idx
        self._lock = threading.RLock()
        self._signal = threading.Condition()
        self._update_pending = False
        self._shutdown_requested = False
        self._done = threading.Event()

    def search(self, pattern: str, options: SearchOptions | None = None) -> SearchResponse:
        """Search the current index."""
        with self._lock:
            return self._idx.search(pattern, options)

    def get_excluded_files(self) -> str:
        """The JSON list of files left out of the current index."""
        with self._lock:
            path = os.path.join(self._idx.ref.directory, EXCLUDED_FILES_FILENAME)
        try:
            with open(path, encoding="utf-8") as handle:
                return handle.read()
        except OSError as exc:
            log.warning("Couldn't read %s %s", EXCLUDED_FILES_FILENAME, exc)
            return ""

    def update(self) -> bool:
        """Request an immediate update; False if push updates are disabled."""
        if not self.repo.push_updates_enabled():
            return False
        with self._signal:
            self._update_pending = True
            self._signal.notify_all()
        return True

    def stop(self) -> None:
        """Ask the poller to finish once any running update completes."""
        with self._signal:
            self._shutdown_requested = True
            self._signal.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the poller has stopped; False if the timeout expired."""
        return self._done.wait(timeout)

    def _begin(self) -> None:
        with self._signal:
            self._update_pending = True
            self._signal.notify_all()

    def _wait_for_begin(self) -> None:
        with self._signal:
            self._signal.wait_for(lambda: self._update_pending)
            self._update_pending = False

    def _wait_for_update(self, delay: float | None) -> None:
        with self._signal:
            self._signal.wait_for(
                lambda: self._update_pending or self._shutdown_requested, timeout=delay
            )
            self._update_pending = False

    def _swap_indexes(self, idx: Index) -> None:
        with self._lock:
            old, self._idx = self._idx, idx
            old.destroy()

    def _complete_shutdown(self) -> None:
        self._done.set()


def hash_for(name: str) -> str:
    """Hex encoded SHA-1 of a string."""
    return hashlib.sha1(name.encode("utf-8")).hexdigest()


def vcs_dir_for(repo: Repo) -> str:
    """Normalized name of the working directory of a repo."""
    return f"vcs-{hash_for(repo.url)}"


def next_index_dir(dbpath: str) -> str:
    """A fresh, randomly named index directory inside ``dbpath``."""
    return os.path.join(dbpath, f"idx-{random.getrandbits(64):08x}")


def _find_existing_refs(dbpath: str) -> _FoundRefs:
    refs = []
    for directory in sorted(glob.glob(os.path.join(dbpath, "idx-*"))):
        try:
            refs.append(read(directory))
        except (OSError, ValueError):
            refs.append(IndexRef(directory=directory))
    return _FoundRefs(refs=refs)


def _build_and_open_index(
    options: IndexOptions, vcs_dir: str, idx_dir: str, url: str, rev: str
) -> Index:
    if not os.path.exists(idx_dir):
        return build(options, idx_dir, vcs_dir, url, rev).open()
    return open_index(idx_dir)


def _update_and_reindex(
    searcher: Searcher,
    dbpath: str,
    vcs_dir: str,
    name: str,
    rev: str,
    wd: WorkDir,
    options: IndexOptions,
    limiter: threading.Semaphore,
) -> tuple[str, bool]:
    with limiter:
        repo = searcher.repo
        try:
            new_rev = wd.pull_or_clone(vcs_dir, repo.url)
        except Exception as exc:  # noqa: BLE001 - a failed pull only skips this round
            log.warning("vcs pull error (%s - %s): %s", name, repo.url, exc)
            return rev, False

        if new_rev == rev:
            return rev, False

        log.info("Rebuilding %s for %s", name, new_rev)
        try:
            idx = _build_and_open_index(
                options, vcs_dir, next_index_dir(dbpath), repo.url, new_rev
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("failed index build (%s): %s", name, exc)
            return rev, False

        try:
            searcher._swap_indexes(idx)
        except Exception as exc:  # noqa: BLE001
            log.warning("failed index swap (%s): %s", name, exc)
            try:
                idx.destroy()
            except Exception as destroy_exc:  # noqa: BLE001
                log.warning("failed to destroy index (%s): %s", name, destroy_exc)
            return rev, False

        return new_rev, True


def _poll(
    searcher: Searcher,
    dbpath: str,
    vcs_dir: str,
    name: str,
    rev: str,
    wd: WorkDir,
    options: IndexOptions,
    limiter: threading.Semaphore,
) -> None:
    repo = searcher.repo
    searcher._wait_for_begin()

    if not repo.poll_updates_enabled() and not repo.push_updates_enabled():
        searcher._complete_shutdown()
        return

    delay = None
    if repo.poll_updates_enabled() and repo.ms_between_polls > 0:
        delay = repo.ms_between_polls / 1000.0

    while True:
        searcher._wait_for_update(delay)
        if searcher._shutdown_requested:
            searcher._complete_shutdown()
            return

        new_rev, ok = _update_and_reindex(
            searcher, dbpath, vcs_dir, name, rev, wd, options, limiter
        )
        if not ok:
            continue
        rev = new_rev
        # Drop the old index's data promptly after a rebuild.
        gc.collect()


def _new_searcher(
    dbpath: str, name: str, repo: Repo, refs: _FoundRefs, limiter: threading.Semaphore
) -> Searcher:
    vcs_dir = os.path.join(dbpath, vcs_dir_for(repo))
    log.info("Searcher started for %s", name)

    wd = new_workdir(repo.vcs, repo.vcs_config())
    options = IndexOptions(
        exclude_dot_files=repo.exclude_dot_files, special_files=wd.special_files()
    )
    rev = wd.pull_or_clone(vcs_dir, repo.url)

    ref = refs.find(repo.url, rev)
    if ref is None:
        idx_dir = next_index_dir(dbpath)
    else:
        idx_dir = ref.directory
        refs.claim(ref)

    idx = _build_and_open_index(options, vcs_dir, idx_dir, repo.url, rev)
    searcher = Searcher(idx, repo, vcs_dir if repo.vcs == _NON_VCS else "")

    thread = threading.Thread(
        target=_poll,
        args=(searcher, dbpath, vcs_dir, name, rev, wd, options, limiter),
        name=f"searcher-{name}",
        daemon=True,
    )
    thread.start()
    return searcher


def new_searcher(dbpath: str, name: str, repo: Repo) -> Searcher:
    """Create a searcher for one repo and start watching it for changes."""
    searcher = _new_searcher(dbpath, name, repo, _FoundRefs(), threading.Semaphore(1))
    searcher._begin()
    return searcher


def make_all(cfg: Config) -> tuple[dict[str, Searcher], dict[str, Exception]]:
    """Create a searcher for every repo in the config.

    Repos that fail are left out of the searchers and reported in the
    errors mapping instead. Unclaimed index directories are removed.
    """
    refs = _find_existing_refs(cfg.db_path)
    limiter = threading.Semaphore(max(cfg.max_concurrent_indexers, 1))
    searchers: dict[str, Searcher] = {}
    errors: dict[str, Exception] = {}

    def create(name: str, repo: Repo) -> Searcher:
        with limiter:
            return _new_searcher(cfg.db_path, name, repo, refs, limiter)

    if cfg.repos:
        with ThreadPoolExecutor(max_workers=len(cfg.repos)) as pool:
            futures = {
                name: pool.submit(create, name, repo) for name, repo in cfg.repos.items()
            }
            for name, future in futures.items():
                try:
                    searchers[name] = future.result()
                except Exception as exc:  # noqa: BLE001 - reported per repo
                    log.warning("%s", exc)
                    errors[name] = exc

    refs.remove_unclaimed()

    for searcher in searchers.values():
        searcher._begin()

    return searchers, errors
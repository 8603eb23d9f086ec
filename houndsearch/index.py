"""Building, reading and searching of per-repository source indexes."""

from __future__ import annotations

import gzip
import json
import os
import re
import shutil
import stat
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .grep import grep_file

MATCH_LIMIT = 5000
MANIFEST_FILENAME = "metadata.json"
EXCLUDED_FILES_FILENAME = "excluded_files.json"
FILES_FILENAME = "files.json"
RAW_DIRNAME = "raw"
FILE_PEEK_SIZE = 2048

REASON_DOT_FILE = "Dot files are excluded."
REASON_INVALID_MODE = "Invalid file mode."
REASON_NOT_TEXT = "Not a text file."

_UTF_MAX = 4


class SearchLimitError(Exception):
    """A search produced more matches than are allowed."""


@dataclass
class IndexOptions:
    """How files are selected when an index is built."""

    exclude_dot_files: bool = False
    special_files: list[str] = field(default_factory=list)


@dataclass
class SearchOptions:
    """Options for a single search."""

    ignore_case: bool = False
    literal_search: bool = False
    lines_of_context: int = 0
    file_regexp: str = ""
    exclude_file_regexp: str = ""
    offset: int = 0
    limit: int = 0


@dataclass
class Match:
    line: str
    line_number: int
    before: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)


@dataclass
class FileMatch:
    filename: str
    matches: list[Match] = field(default_factory=list)


@dataclass
class SearchResponse:
    matches: list[FileMatch]
    files_with_match: int
    files_opened: int
    duration: float
    revision: str


@dataclass
class ExcludedFile:
    filename: str
    reason: str


def _json_for_web(value: Any) -> str:
    text = json.dumps(value, ensure_ascii=False)
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text


@dataclass
class IndexRef:
    """Metadata of an index directory on disk."""

    url: str = ""
    rev: str = ""
    time: datetime | None = None
    directory: str = ""

    def _write_manifest(self) -> None:
        payload = {
            "url": self.url,
            "rev": self.rev,
            "time": None if self.time is None else self.time.isoformat(),
        }
        with open(
            os.path.join(self.directory, MANIFEST_FILENAME), "w", encoding="utf-8"
        ) as handle:
            json.dump(payload, handle)

    def open(self) -> Index:
        """Open the index for searching."""
        return Index(self)

    def remove(self) -> None:
        """Delete the index directory; a missing directory is not an error."""
        try:
            shutil.rmtree(self.directory)
        except FileNotFoundError:
            pass


class Index:
    """A searchable index of one revision of a repository."""

    def __init__(self, ref: IndexRef) -> None:
        self.ref = ref
        self._lock = threading.Lock()
        with open(os.path.join(ref.directory, FILES_FILENAME), encoding="utf-8") as handle:
            self._names: list[str] | None = json.load(handle)

    def __enter__(self) -> Index:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the index; later searches fail."""
        with self._lock:
            self._names = None

    def destroy(self) -> None:
        """Close the index and delete its directory."""
        with self._lock:
            self._names = None
            self.ref.remove()

    def search(self, pattern: str, options: SearchOptions | None = None) -> SearchResponse:
        """Search every indexed file for lines matching ``pattern``."""
        started = time.monotonic()
        opts = options if options is not None else SearchOptions()

        with self._lock:
            names = self._names
            if names is None:
                raise ValueError("search on a closed index")

            source = re.escape(pattern) if opts.literal_search else pattern
            regex = re.compile(get_regexp_pattern(source, opts.ignore_case).encode("utf-8"))
            file_re = re.compile(opts.file_regexp) if opts.file_regexp else None
            exclude_re = re.compile(opts.exclude_file_regexp) if opts.exclude_file_regexp else None

            results: list[FileMatch] = []
            files_opened = files_found = files_collected = matches_collected = 0
            raw_dir = os.path.join(self.ref.directory, RAW_DIRNAME)

            for name in names:
                if file_re is not None and file_re.search(name) is None:
                    continue
                if exclude_re is not None and exclude_re.search(name) is not None:
                    continue

                files_opened += 1
                has_match = False
                matches: list[Match] = []
                for found in grep_file(
                    os.path.join(raw_dir, name), regex, int(opts.lines_of_context)
                ):
                    has_match = True
                    if files_found < opts.offset or (
                        opts.limit > 0 and files_collected >= opts.limit
                    ):
                        break
                    matches_collected += 1
                    matches.append(
                        Match(
                            line=_text(found.line),
                            line_number=found.line_number,
                            before=[_text(line) for line in found.before],
                            after=[_text(line) for line in found.after],
                        )
                    )
                    if matches_collected > MATCH_LIMIT:
                        raise SearchLimitError(
                            f"search exceeds limit on matches: {MATCH_LIMIT}"
                        )

                if not has_match:
                    continue
                files_found += 1
                if matches:
                    files_collected += 1
                    results.append(FileMatch(filename=name, matches=matches))

        return SearchResponse(
            matches=results,
            files_with_match=files_found,
            files_opened=files_opened,
            duration=time.monotonic() - started,
            revision=self.ref.rev,
        )


def _text(line: bytes) -> str:
    return line.decode("utf-8", "replace")


def get_regexp_pattern(pattern: str, ignore_case: bool) -> str:
    """Wrap a pattern with the flags used for searching."""
    if ignore_case:
        return "(?i)(?m)" + pattern
    return "(?m)" + pattern


def valid_utf8_ignoring_partial_trailing_rune(data: bytes) -> bool:
    """Whether ``data`` is UTF-8, allowing a cut-off character at its end."""
    try:
        data.decode("utf-8")
    except UnicodeDecodeError as exc:
        position = exc.start
        return len(data) - position < _UTF_MAX and (data[position] & 0xC0) != 0x80
    return True


def is_text_file(filename: str) -> bool:
    """Whether the start of the file looks like UTF-8 text."""
    with open(filename, "rb") as handle:
        data = handle.read(FILE_PEEK_SIZE)
    if len(data) < FILE_PEEK_SIZE:
        try:
            data.decode("utf-8")
        except UnicodeDecodeError:
            return False
        return True
    return valid_utf8_ignoring_partial_trailing_rune(data)


def _add_file(dst: str, path: str, rel: str) -> None:
    with open(path, "rb") as source, gzip.open(
        os.path.join(dst, RAW_DIRNAME, rel), "wb"
    ) as target:
        shutil.copyfileobj(source, target)


def _walk(
    options: IndexOptions,
    dst: str,
    src: str,
    path: str,
    names: list[str],
    excluded: list[ExcludedFile],
) -> None:
    info = os.lstat(path)
    name = os.path.basename(os.path.normpath(path))
    rel = os.path.relpath(path, src)
    is_dir = stat.S_ISDIR(info.st_mode)

    # Files that belong to the VCS itself are never part of the index.
    if name in options.special_files:
        return

    if options.exclude_dot_files and name.startswith("."):
        if not is_dir:
            excluded.append(ExcludedFile(rel, REASON_DOT_FILE))
        return

    if is_dir:
        if rel != ".":
            os.mkdir(os.path.join(dst, RAW_DIRNAME, rel))
        for entry in sorted(os.listdir(path)):
            _walk(options, dst, src, os.path.join(path, entry), names, excluded)
        return

    if not stat.S_ISREG(info.st_mode):
        excluded.append(ExcludedFile(rel, REASON_INVALID_MODE))
        return

    if not is_text_file(path):
        excluded.append(ExcludedFile(rel, REASON_NOT_TEXT))
        return

    _add_file(dst, path, rel)
    names.append(rel)


def _index_all_files(options: IndexOptions, dst: str, src: str) -> None:
    if os.path.islink(src):
        src = os.path.join(os.path.dirname(src), os.readlink(src))

    names: list[str] = []
    excluded: list[ExcludedFile] = []
    _walk(options, dst, src, src, names, excluded)

    with open(os.path.join(dst, EXCLUDED_FILES_FILENAME), "w", encoding="utf-8") as handle:
        handle.write(
            _json_for_web([{"Filename": e.filename, "Reason": e.reason} for e in excluded])
        )
        handle.write("\n")

    with open(os.path.join(dst, FILES_FILENAME), "w", encoding="utf-8") as handle:
        json.dump(names, handle)


def build(options: IndexOptions, dst: str, src: str, url: str, rev: str) -> IndexRef:
    """Index every file under ``src`` into the directory ``dst``."""
    os.makedirs(dst, exist_ok=True)
    os.mkdir(os.path.join(dst, RAW_DIRNAME))
    _index_all_files(options, dst, src)

    ref = IndexRef(url=url, rev=rev, time=datetime.now(timezone.utc), directory=dst)
    ref._write_manifest()
    return ref


def read(directory: str) -> IndexRef:
    """Read the metadata of the index in ``directory``."""
    with open(os.path.join(directory, MANIFEST_FILENAME), encoding="utf-8") as handle:
        data = json.load(handle)
    stamp = data.get("time")
    return IndexRef(
        url=data.get("url", ""),
        rev=data.get("rev", ""),
        time=datetime.fromisoformat(stamp) if stamp else None,
        directory=directory,
    )


def open_index(directory: str) -> Index:
    """Open the index in ``directory`` for searching."""
    return read(directory).open()
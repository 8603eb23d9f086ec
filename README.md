# houndsearch

A library for regular-expression search over the source of many
repositories. Each repository is checked out with its version-control tool.
Its text files are copied, gzip-compressed, into an index directory. A
background thread keeps each repository current, either by polling or on
request.

## Modules

- **`houndsearch.config`**: `Config.load_from_file(filename)` reads a JSON
  configuration and fills in defaults:
  - poll interval: 30000 ms
  - VCS: `git`
  - title: `Hound`
  - health-check URI: `/healthz`
  - maximum concurrent indexers: 2
  - URL patterns

  A relative `dbpath` is resolved against the directory of the config file.
  Global `vcs-config` values are merged into each repository's own
  `vcs-config`, and the repository's own keys win. `Repo` has
  `poll_updates_enabled()` (default on), `push_updates_enabled()` (default
  off) and `vcs_config()`. `Config.to_json_string()` returns the repositories
  as JSON, with every `vcs-config` written as `{}`.
- **`houndsearch.vcs`**: drivers that clone and update working directories:
  - `GitDriver`: `git`; options `ref` and `detect-ref`
  - `MercurialDriver`: `hg` or `mercurial`
  - `SVNDriver`: `svn` or `subversion`; options `username` and `password`
  - `BzrDriver`: `bzr`
  - `NonVcsDriver`: `nonvcs`; a plain directory that is copied into place,
    with revision `nonvcs`

  `new_workdir(name, cfg)` returns a `WorkDir`, or raises `VcsError` if the
  name is unknown. `WorkDir.pull_or_clone(directory, url)` clones when the
  directory is missing and pulls otherwise. It returns the head revision.
  `register` and `registered_names` manage the driver table. The `git`, `hg`,
  `svn`/`svnversion` and `bzr` programs must be on `PATH` for the drivers
  that use them.
- **`houndsearch.grep`**: line-oriented matching on bytes:
  - `grep_with_context(data, regex, context)` yields `GrepMatch` objects with
    the matched line, its 1-based line number and the lines before and after
    it.
  - `grep_lines(stream, regex)` matches a binary stream that it reads in
    chunks.
  - `grep_file(filename, regex, context)` matches a gzip-compressed file.
  - `first_n_lines`, `last_n_lines` and `count_lines` are the helpers that
    the functions above use.
- **`houndsearch.index`**: `build(options, dst, src, url, rev)` copies every
  text file under `src` into `dst`. It records the files it left out in
  `excluded_files.json`: dot files when `exclude_dot_files` is set,
  non-regular files and non-UTF-8 files. Files named in `special_files`,
  such as `.git`, are skipped without a record. `build` then writes a
  `metadata.json` manifest. `read(directory)` loads an `IndexRef`, and
  `open_index(directory)` returns an `Index`. `Index.search(pattern, options)`
  goes through the indexed files and returns a `SearchResponse`. `Index` can
  be used as a context manager.
- **`houndsearch.searcher`**: `make_all(cfg)` creates a `Searcher` for every
  repository and returns `(searchers, errors)`. It reuses existing `idx-*`
  directories whose URL and revision still match, and removes the ones it
  does not reuse. `new_searcher(dbpath, name, repo)` creates a single
  searcher. `Searcher` has these methods:
  - `search`
  - `get_excluded_files`: returns the JSON text of the exclusion list
  - `update`: asks for an immediate update; returns `False` if push updates
    are disabled
  - `stop`
  - `wait(timeout)`

## Search options

`SearchOptions` has these fields:

- `ignore_case`
- `literal_search`: escapes the pattern
- `lines_of_context`
- `file_regexp`: only file names that match are searched
- `exclude_file_regexp`: file names that match are skipped
- `offset` and `limit`: page over files that have a match

Patterns use Python `re` syntax and are compiled in multiline mode. A search
raises `SearchLimitError` once it collects more than 5000 matching lines.

## Example

A configuration file:

```json
{
  "dbpath": "data",
  "max-concurrent-indexers": 2,
  "vcs-config": {
    "git": {"detect-ref": true}
  },
  "repos": {
    "MyProject": {
      "url": "https://git.example.com/my-project.git"
    }
  }
}
```

Using it:

```python
from houndsearch.config import Config
from houndsearch.index import SearchOptions
from houndsearch.searcher import make_all

cfg = Config()
cfg.load_from_file("config.json")

searchers, errors = make_all(cfg)
for name, err in errors.items():
    print(f"{name}: {err}")

for name, searcher in searchers.items():
    response = searcher.search("def main", SearchOptions(lines_of_context=1))
    for file_match in response.matches:
        for match in file_match.matches:
            print(f"{name}/{file_match.filename}:{match.line_number}: {match.line}")

for searcher in searchers.values():
    searcher.stop()
```

## What it does not do

This package is a library only:

- It has no command-line program.
- It has no HTTP server, search API or web interface. `Config.health_check_uri`
  and the URL patterns are loaded and given defaults, but nothing in the
  package serves them.
- There is no trigram or other pre-computed index. A search reads every
  indexed file of the repository.

## Installing

```
pip install .
```

## Running the tests

```
pip install .[test]
pytest
```
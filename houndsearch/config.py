"""Server configuration: loading, defaults and merging of VCS options."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

DEFAULT_MS_BETWEEN_POLL = 30000
DEFAULT_MAX_CONCURRENT_INDEXERS = 2
DEFAULT_PUSH_ENABLED = False
DEFAULT_POLL_ENABLED = True
DEFAULT_TITLE = "Hound"
DEFAULT_VCS = "git"
DEFAULT_BASE_URL = "{url}/blob/{rev}/{path}{anchor}"
DEFAULT_NON_VCS_BASE_URL = "/nonvcs/{name}/{{path}}{{anchor}}"
DEFAULT_ANCHOR = "#L{line}"
DEFAULT_NON_VCS_ANCHOR = "#codeline.{line}"
DEFAULT_HEALTH_CHECK_URI = "/healthz"

_NON_VCS = "nonvcs"


def _typed(values: dict[str, Any], key: str, kind: type, default: Any, where: str) -> Any:
    """Fetch ``key`` from a decoded JSON object, checking its type."""
    value = values.get(key)
    if value is None:
        return default
    if kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise ValueError(f"{where}: {key!r} must be of type {kind.__name__}")
    return value


def _object(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{where}: expected a JSON object")
    return value


def _secret(value: Any) -> bytes | None:
    """Keep a raw VCS config value as JSON bytes; ``null`` means absent."""
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def _decode_object(raw: bytes | None) -> dict[str, Any]:
    if not raw:
        return {}
    values = json.loads(raw)
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise ValueError("vcs-config: expected a JSON object")
    return values


@dataclass
class UrlPattern:
    """How links to a file in a repository are built."""

    base_url: str = ""
    anchor: str = ""

    def _to_json(self) -> dict[str, Any]:
        return {"base-url": self.base_url, "anchor": self.anchor}


@dataclass
class Repo:
    """One repository that the server indexes."""

    url: str = ""
    ms_between_polls: int = 0
    vcs: str = ""
    vcs_config_message: bytes | None = None
    url_pattern: UrlPattern | None = None
    exclude_dot_files: bool = False
    enable_poll_updates: bool | None = None
    enable_push_updates: bool | None = None

    @classmethod
    def _from_json(cls, name: str, data: Any) -> Repo:
        where = f"repo {name!r}"
        values = _object(data, where)
        pattern_data = values.get("url-pattern")
        pattern = None
        if pattern_data is not None:
            pattern_values = _object(pattern_data, f"{where} url-pattern")
            pattern = UrlPattern(
                base_url=_typed(pattern_values, "base-url", str, "", where),
                anchor=_typed(pattern_values, "anchor", str, "", where),
            )
        return cls(
            url=_typed(values, "url", str, "", where),
            ms_between_polls=_typed(values, "ms-between-poll", int, 0, where),
            vcs=_typed(values, "vcs", str, "", where),
            vcs_config_message=_secret(values.get("vcs-config")),
            url_pattern=pattern,
            exclude_dot_files=_typed(values, "exclude-dot-files", bool, False, where),
            enable_poll_updates=_typed(values, "enable-poll-updates", bool, None, where),
            enable_push_updates=_typed(values, "enable-push-updates", bool, None, where),
        )

    def poll_updates_enabled(self) -> bool:
        """Whether the repository is polled for changes."""
        if self.enable_poll_updates is None:
            return DEFAULT_POLL_ENABLED
        return self.enable_poll_updates

    def push_updates_enabled(self) -> bool:
        """Whether updates may be requested by a push."""
        if self.enable_push_updates is None:
            return DEFAULT_PUSH_ENABLED
        return self.enable_push_updates

    def vcs_config(self) -> bytes | None:
        """The JSON encoded vcs-config of this repo, or None if it has none."""
        return self.vcs_config_message

    def _apply_defaults(self, name: str) -> None:
        if self.ms_between_polls == 0:
            self.ms_between_polls = DEFAULT_MS_BETWEEN_POLL
        if self.vcs == "":
            self.vcs = DEFAULT_VCS

        non_vcs = self.vcs == _NON_VCS
        base_url = DEFAULT_NON_VCS_BASE_URL.format(name=name) if non_vcs else DEFAULT_BASE_URL
        anchor = DEFAULT_NON_VCS_ANCHOR if non_vcs else DEFAULT_ANCHOR

        if self.url_pattern is None:
            self.url_pattern = UrlPattern(base_url=base_url, anchor=anchor)
            return
        if self.url_pattern.base_url == "":
            self.url_pattern.base_url = base_url
        if self.url_pattern.anchor == "":
            self.url_pattern.anchor = anchor

    def _to_json(self) -> dict[str, Any]:
        # The vcs-config may hold credentials, so it is never written out.
        return {
            "url": self.url,
            "ms-between-poll": self.ms_between_polls,
            "vcs": self.vcs,
            "vcs-config": None if self.vcs_config_message is None else {},
            "url-pattern": None if self.url_pattern is None else self.url_pattern._to_json(),
            "exclude-dot-files": self.exclude_dot_files,
            "enable-poll-updates": self.enable_poll_updates,
            "enable-push-updates": self.enable_push_updates,
        }


@dataclass
class Config:
    """The whole server configuration."""

    db_path: str = ""
    title: str = ""
    repos: dict[str, Repo] = field(default_factory=dict)
    max_concurrent_indexers: int = 0
    health_check_uri: str = ""
    vcs_config_messages: dict[str, bytes | None] = field(default_factory=dict)

    def load_from_file(self, filename: str) -> None:
        """Read a JSON config file and fill in defaults."""
        with open(filename, encoding="utf-8") as handle:
            data = json.load(handle)
        values = _object(data, "config")

        self.db_path = _typed(values, "dbpath", str, self.db_path, "config")
        self.title = _typed(values, "title", str, self.title, "config")
        self.max_concurrent_indexers = _typed(
            values, "max-concurrent-indexers", int, self.max_concurrent_indexers, "config"
        )
        self.health_check_uri = _typed(
            values, "health-check-uri", str, self.health_check_uri, "config"
        )
        repos = values.get("repos")
        if repos is not None:
            self.repos = {
                name: Repo._from_json(name, repo)
                for name, repo in _object(repos, "repos").items()
            }
        messages = values.get("vcs-config")
        if messages is not None:
            self.vcs_config_messages = {
                vcs: _secret(raw) for vcs, raw in _object(messages, "vcs-config").items()
            }

        if self.title == "":
            self.title = DEFAULT_TITLE

        if not os.path.isabs(self.db_path):
            self.db_path = os.path.abspath(
                os.path.join(os.path.dirname(filename), self.db_path)
            )

        for name, repo in self.repos.items():
            repo._apply_defaults(name)

        if self.max_concurrent_indexers == 0:
            self.max_concurrent_indexers = DEFAULT_MAX_CONCURRENT_INDEXERS
        if self.health_check_uri == "":
            self.health_check_uri = DEFAULT_HEALTH_CHECK_URI

        self._merge_vcs_configs()

    def _merge_vcs_configs(self) -> None:
        """Fill repo-level vcs-config with global values it does not set."""
        if not self.vcs_config_messages:
            return

        global_values = {
            vcs: _decode_object(raw) for vcs, raw in self.vcs_config_messages.items()
        }

        for repo in self.repos.values():
            defaults = global_values.get(repo.vcs)
            if defaults is None:
                continue
            values = _decode_object(repo.vcs_config())
            for key, value in defaults.items():
                values.setdefault(key, value)
            repo.vcs_config_message = json.dumps(
                values, sort_keys=True, separators=(",", ":")
            ).encode("utf-8")

    def to_json_string(self) -> str:
        """The repos as a JSON string, safe to hand to a web client."""
        payload = {name: repo._to_json() for name, repo in sorted(self.repos.items())}
        text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        for char, escaped in (
            ("<", "\\u003c"),
            (">", "\\u003e"),
            ("&", "\\u0026"),
            ("\u2028", "\\u2028"),
            ("\u2029", "\\u2029"),
        ):
            text = text.replace(char, escaped)
        return text
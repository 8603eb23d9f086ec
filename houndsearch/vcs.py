"""Version control drivers that clone and update working directories."""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

log = logging.getLogger(__name__)

DEFAULT_REF = "master"

_HEAD_BRANCH = re.compile(r"HEAD branch: (?P<branch>.+)")


class VcsError(Exception):
    """A VCS operation failed or a driver could not be created."""


class Driver(ABC):
    """The small set of VCS operations the indexer needs."""

    @abstractmethod
    def clone(self, directory: str, url: str) -> str:
        """Clone a new working directory and return its head revision."""

    @abstractmethod
    def pull(self, directory: str) -> str:
        """Update the working directory and return its head revision."""

    @abstractmethod
    def head_rev(self, directory: str) -> str:
        """Return the revision at the head of the working directory."""

    @abstractmethod
    def special_files(self) -> list[str]:
        """Names of files that belong to the VCS and are never indexed."""


Factory = Callable[[bytes | None], Driver]

_drivers: dict[str, Factory] = {}


def register(factory: Factory, *args: str) -> None:
    """Register a driver factory under one or more names."""
    if factory is None:
        raise ValueError("vcs: cannot register nil factory")
    for name in args:
        _drivers[name] = factory


def registered_names() -> list[str]:
    """All names under which a driver is registered, sorted."""
    return sorted(_drivers)


@dataclass
class WorkDir:
    """A VCS working directory handled by one driver."""

    driver: Driver

    def clone(self, directory: str, url: str) -> str:
        return self.driver.clone(directory, url)

    def pull(self, directory: str) -> str:
        return self.driver.pull(directory)

    def head_rev(self, directory: str) -> str:
        return self.driver.head_rev(directory)

    def special_files(self) -> list[str]:
        return self.driver.special_files()

    def pull_or_clone(self, directory: str, url: str) -> str:
        """Pull if the directory exists, clone it otherwise."""
        if os.path.exists(directory):
            return self.driver.pull(directory)
        return self.driver.clone(directory, url)


def new_workdir(name: str, cfg: bytes | None) -> WorkDir:
    """Create a WorkDir for the named VCS from its JSON configuration."""
    factory = _drivers.get(name)
    if factory is None:
        raise VcsError(f"vcs: {name} is not a valid vcs driver.")
    return WorkDir(factory(cfg))


def _decode_config(cfg: bytes | None) -> dict[str, Any]:
    if cfg is None:
        return {}
    try:
        values = json.loads(cfg)
    except ValueError as exc:
        raise VcsError(f"vcs: invalid config: {exc}") from exc
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise VcsError("vcs: config must be a JSON object")
    return values


def _option(values: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = values.get(key)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise VcsError(f"vcs: config option {key!r} must be of type {kind.__name__}")
    return value


def _split(directory: str) -> tuple[str | None, str]:
    parent, name = os.path.split(directory)
    return parent or None, name


def _output(args: list[str], directory: str | None) -> str:
    """Run a command and return its trimmed standard output."""
    try:
        proc = subprocess.run(
            args, cwd=directory, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, check=False
        )
    except OSError as exc:
        raise VcsError(f"{args[0]}: {exc}") from exc
    if proc.returncode != 0:
        raise VcsError(f"{' '.join(args)} exited with status {proc.returncode}")
    return proc.stdout.decode("utf-8", "replace").strip()


def _combined(args: list[str], directory: str | None) -> tuple[int, str]:
    """Run a command and return its status and combined output."""
    try:
        proc = subprocess.run(
            args, cwd=directory, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
        )
    except OSError as exc:
        return -1, f"{exc}\n"
    return proc.returncode, proc.stdout.decode("utf-8", "replace")


def _run_logged(desc: str, directory: str, args: list[str]) -> str:
    """Run a command whose failure is only logged."""
    status, out = _combined(args, directory)
    if status != 0:
        log.warning("Failed to %s %s, see output below\n%sContinuing...", desc, directory, out)
    return out


def _run_checked(desc: str, target: str, args: list[str], directory: str | None) -> None:
    status, out = _combined(args, directory)
    if status != 0:
        log.warning("Failed to %s %s, see output below\n%sContinuing...", desc, target, out)
        raise VcsError(f"{' '.join(args[:2])} failed with status {status}")


class RefDetector(Protocol):
    def detect_ref(self, directory: str) -> str: ...


class HeadBranchDetector:
    """Finds the default branch of the origin remote."""

    def detect_ref(self, directory: str) -> str:
        output = _run_logged(
            "git show remote info", directory, ["git", "remote", "show", "origin"]
        )
        match = _HEAD_BRANCH.search(output)
        if match is None:
            log.warning(
                "could not determine target ref in %s. Will fall back to default ref %s",
                directory,
                DEFAULT_REF,
            )
            return ""
        return match.group("branch")


@dataclass
class GitDriver(Driver):
    detect_ref: bool = False
    ref: str = ""
    ref_detector: RefDetector = field(default_factory=HeadBranchDetector)

    def target_ref(self, directory: str) -> str:
        """The ref to track: explicit, detected, or the default."""
        target = ""
        if self.ref:
            target = self.ref
        elif self.detect_ref:
            target = self.ref_detector.detect_ref(directory)
        return target or DEFAULT_REF

    def head_rev(self, directory: str) -> str:
        return _output(["git", "rev-parse", "HEAD"], directory)

    def pull(self, directory: str) -> str:
        target = self.target_ref(directory)
        _run_logged(
            "git fetch",
            directory,
            [
                "git", "fetch", "--prune", "--no-tags", "--depth", "1",
                "origin", f"+{target}:remotes/origin/{target}",
            ],
        )
        _run_logged("git reset", directory, ["git", "reset", "--hard", f"origin/{target}"])
        return self.head_rev(directory)

    def clone(self, directory: str, url: str) -> str:
        parent, name = _split(directory)
        _run_checked("clone", url, ["git", "clone", "--depth", "1", url, name], parent)
        return self.pull(directory)

    def special_files(self) -> list[str]:
        return [".git"]


def _new_git(cfg: bytes | None) -> Driver:
    values = _decode_config(cfg)
    return GitDriver(
        detect_ref=_option(values, "detect-ref", bool, False),
        ref=_option(values, "ref", str, ""),
    )


@dataclass
class BzrDriver(Driver):
    def head_rev(self, directory: str) -> str:
        return _output(["bzr", "revno"], directory)

    def pull(self, directory: str) -> str:
        _run_checked("bzr pull", directory, ["bzr", "pull"], directory)
        return self.head_rev(directory)

    def clone(self, directory: str, url: str) -> str:
        parent, name = _split(directory)
        _run_checked("clone", url, ["bzr", "branch", url, name], parent)
        return self.head_rev(directory)

    def special_files(self) -> list[str]:
        return [".bzr"]


def _new_bzr(cfg: bytes | None) -> Driver:
    return BzrDriver()


def _run_quiet(args: list[str], directory: str | None) -> None:
    try:
        proc = subprocess.run(
            args, cwd=directory, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False
        )
    except OSError as exc:
        raise VcsError(f"{args[0]}: {exc}") from exc
    if proc.returncode != 0:
        raise VcsError(f"{' '.join(args[:2])} failed with status {proc.returncode}")


@dataclass
class MercurialDriver(Driver):
    def head_rev(self, directory: str) -> str:
        return _output(["hg", "log", "-r", ".", "--template", "{node}"], directory)

    def pull(self, directory: str) -> str:
        _run_quiet(["hg", "pull", "-u"], directory)
        return self.head_rev(directory)

    def clone(self, directory: str, url: str) -> str:
        parent, name = _split(directory)
        _run_quiet(["hg", "clone", url, name], parent)
        return self.head_rev(directory)

    def special_files(self) -> list[str]:
        return [".hg"]


def _new_hg(cfg: bytes | None) -> Driver:
    return MercurialDriver()


@dataclass
class SVNDriver(Driver):
    username: str = ""
    password: str = ""

    def _credentials(self) -> list[str]:
        return ["--username", self.username, "--password", self.password]

    def head_rev(self, directory: str) -> str:
        return _output(["svnversion"], directory)

    def pull(self, directory: str) -> str:
        args = ["svn", "update", "--ignore-externals", *self._credentials()]
        _run_checked("SVN update", directory, args, directory)
        return self.head_rev(directory)

    def clone(self, directory: str, url: str) -> str:
        parent, name = _split(directory)
        args = ["svn", "checkout", "--ignore-externals", *self._credentials(), url, name]
        _run_checked("checkout", url, args, parent)
        return self.head_rev(directory)

    def special_files(self) -> list[str]:
        return [".svn"]


def _new_svn(cfg: bytes | None) -> Driver:
    values = _decode_config(cfg)
    return SVNDriver(
        username=_option(values, "username", str, ""),
        password=_option(values, "password", str, ""),
    )


@dataclass
class NonVcsDriver(Driver):
    """Indexes a plain directory, copied or linked into place."""

    symlink: bool = False

    def head_rev(self, directory: str) -> str:
        return "nonvcs"

    def pull(self, directory: str) -> str:
        return self.head_rev(directory)

    def clone(self, directory: str, url: str) -> str:
        try:
            if self.symlink:
                os.symlink(url, directory)
            elif os.path.islink(url):
                os.symlink(os.readlink(url), directory)
            elif os.path.isdir(url):
                shutil.copytree(url, directory, symlinks=True)
            else:
                shutil.copy2(url, directory)
        except OSError as exc:
            log.warning("copy error %s", exc)
            raise VcsError(f"cannot copy {url} to {directory}: {exc}") from exc
        return self.pull(directory)

    def special_files(self) -> list[str]:
        return []


def _new_non_vcs(cfg: bytes | None) -> Driver:
    # The configuration is validated but carries no options that are read.
    _decode_config(cfg)
    return NonVcsDriver()


register(_new_git, "git")
register(_new_bzr, "bzr")
register(_new_hg, "hg", "mercurial")
register(_new_svn, "svn", "subversion")
register(_new_non_vcs, "nonvcs")
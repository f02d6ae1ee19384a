"""Changed action discovery."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from loguru import logger

from .exceptions import ScanError

ACTIONS_DIR = "actions"


@dataclass(frozen=True, order=True)
class Action:
    """One buildable unit stored at ``actions/<name>/<version>``."""

    name: str
    version: str

    def path(self, actions_root: Path) -> Path:
        """Directory of this action under ``actions_root``."""
        return Path(actions_root) / self.name / self.version

    def __str__(self) -> str:
        return f"{self.name}:{self.version}"


def _changed_paths(repo_root: Path, actions_subpath: str, git_ref: str, log=logger) -> list[str]:
    """Run ``git diff`` and return paths relative to ``repo_root``.

    Args:
        repo_root: repository working tree to run git in
        actions_subpath: pathspec restricting the diff
        git_ref: reference (or range) to compare against
        log: loguru logger

    Returns:
        Changed file paths, one per line of git output
    """
    cmd = [
        "git",
        "--no-pager",
        "diff",
        "--name-only",
        "--relative",
        git_ref,
        "--",
        actions_subpath,
    ]
    log.debug(f"Running {' '.join(cmd)} in {repo_root}")
    try:
        result = subprocess.run(
            cmd,
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=True,
        )
    except OSError as exc:
        # missing git binary, missing or unreadable repo_root, repo_root not a directory
        raise ScanError(f"unable to run git in {repo_root}: {exc}") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
        raise ScanError(f"failed to compare {repo_root} against {git_ref!r}: {detail}") from exc

    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def group_actions(paths: list[str], actions_subpath: str) -> set[Action]:
    """Group changed file paths by their ``<name>/<version>`` directory.

    Files that are not inside a version directory (for example
    ``actions/README.md`` or ``actions/foo/README.md``) are ignored.

    Args:
        paths: changed file paths relative to the repository root
        actions_subpath: directory holding the action trees

    Returns:
        One Action per distinct (name, version) pair
    """
    prefix = PurePosixPath(actions_subpath)
    found: set[Action] = set()
    for raw in paths:
        path = PurePosixPath(raw)
        try:
            rel = path.relative_to(prefix)
        except ValueError:
            continue
        # name / version / at least one file
        if len(rel.parts) < 3:
            continue
        found.add(Action(name=rel.parts[0], version=rel.parts[1]))
    return found


def locate(
    repo_root: Path | str,
    actions_subpath: str = ACTIONS_DIR,
    git_ref: str = "HEAD^@",
    log=None,
) -> list[Action]:
    """Enumerate actions whose files differ from ``git_ref``.

    Args:
        repo_root: root of the actions repository
        actions_subpath: directory holding ``<name>/<version>`` trees, relative to repo_root
        git_ref: comparison reference, e.g. ``HEAD^@`` or ``main..HEAD``
        log: loguru logger (defaults to the global logger)

    Returns:
        Actions sorted by name then version; empty when nothing changed

    Raises:
        ScanError: git could not compute the diff
    """
    log = log if log is not None else logger
    repo_root = Path(repo_root)
    paths = _changed_paths(repo_root, actions_subpath, git_ref, log=log)
    actions_root = repo_root / actions_subpath

    actions = []
    for action in sorted(group_actions(paths, actions_subpath)):
        if not action.path(actions_root).is_dir():
            log.debug(f"Skipping {action}: directory no longer exists")
            continue
        actions.append(action)

    log.info(f"Found {len(actions)} modified actions since {git_ref}")
    return actions

"""Package manifests derived from action READMEs.

An action README starts with a YAML front-matter block::

    ---
    slug: rootio
    name: rootio
    version: v1.0.0
    description: "Manages the disks and filesystems"
    tags: disk
    maintainers: Jane Doe <jane@example.com>
    createdAt: "2021-03-01T15:00:00.000Z"
    ---

    # Rootio
    ...

Parsing is behind the narrow :class:`ManifestParser` interface so the
front-matter reader can be replaced without touching the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, TextIO

import yaml

from .exceptions import MetadataError
from .locator import Action

README_FILE = "README.md"

# front-matter keys mapped onto Manifest fields; everything else lands in ``extra``
_KNOWN_KEYS = {"name", "version", "displayName", "description", "createdAt", "tags", "keywords", "maintainers"}


class ManifestParser(Protocol):
    def parse(self, stream: TextIO) -> dict[str, Any]:
        """Return the structured fields found in ``stream`` or raise ValueError."""
        ...


class FrontMatterParser:
    """Read the ``---`` delimited YAML header of a markdown document."""

    delimiter = "---"

    def parse(self, stream: TextIO) -> dict[str, Any]:
        lines = stream.read().splitlines()
        if not lines or lines[0].strip() != self.delimiter:
            raise ValueError("document does not start with a front-matter block")

        try:
            end = next(i for i, line in enumerate(lines[1:], start=1) if line.strip() == self.delimiter)
        except StopIteration:
            raise ValueError("front-matter block is not terminated") from None

        try:
            fields = yaml.safe_load("\n".join(lines[1:end])) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"invalid front-matter YAML: {exc}") from exc
        if not isinstance(fields, dict):
            raise ValueError("front-matter must be a mapping")

        if "displayName" not in fields:
            for line in lines[end + 1 :]:
                if line.startswith("# "):
                    fields["displayName"] = line[2:].strip()
                    break
        return fields


def _as_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(",") if v.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(v).strip() for v in value if str(v).strip())
    return (str(value),)


def _strip_v(version: str) -> str:
    return version[1:] if version[:1] in ("v", "V") else version


@dataclass(frozen=True)
class Manifest:
    """Catalog metadata for one action. Never persisted."""

    name: str
    version: str
    display_name: str | None = None
    description: str | None = None
    created_at: str | None = None
    keywords: tuple[str, ...] = ()
    maintainers: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def image_tag(self, repository: str) -> str:
        """``<repository>/<name>:v<version>``"""
        return f"{repository.rstrip('/')}/{self.name}:v{self.version}"

    def matches(self, action: Action) -> bool:
        """Whether this manifest belongs to ``action``.

        The directory segment may be a leading dotted prefix of the manifest
        version, so ``v1`` accepts ``1.0.3``.
        """
        if self.name != action.name:
            return False
        directory = _strip_v(action.version)
        return self.version == directory or self.version.startswith(directory + ".")

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> Manifest:
        """Build a Manifest from parsed front-matter fields.

        Args:
            fields: mapping returned by a ManifestParser

        Returns:
            Manifest with the version stripped of its ``v`` prefix

        Raises:
            ValueError: ``name`` or ``version`` is missing
        """
        name = str(fields.get("name") or "").strip()
        version = _strip_v(str(fields.get("version") or "").strip())
        if not name or not version:
            missing = [k for k, v in (("name", name), ("version", version)) if not v]
            raise ValueError(f"missing required field(s): {', '.join(missing)}")

        return cls(
            name=name,
            version=version,
            display_name=fields.get("displayName"),
            description=fields.get("description"),
            created_at=str(fields["createdAt"]) if fields.get("createdAt") is not None else None,
            keywords=_as_list(fields.get("keywords", fields.get("tags"))),
            maintainers=_as_list(fields.get("maintainers")),
            extra={k: v for k, v in fields.items() if k not in _KNOWN_KEYS},
        )


def derive(
    documentation_file: Path | str,
    action: Action | None = None,
    parser: ManifestParser | None = None,
) -> Manifest:
    """Build a Manifest from an action README.

    Args:
        documentation_file: README to read
        action: owning action; when given, name and version are cross-checked
        parser: conversion backend (defaults to FrontMatterParser)

    Returns:
        Manifest with at least name and version

    Raises:
        MetadataError: the file cannot be opened or lacks the required fields
    """
    documentation_file = Path(documentation_file)
    parser = parser or FrontMatterParser()

    try:
        with open(documentation_file, encoding="utf-8") as f:
            fields = parser.parse(f)
    except OSError as exc:
        raise MetadataError(f"error reading the README: {exc.strerror or exc}", documentation_file) from exc
    except ValueError as exc:
        raise MetadataError(f"error converting the README to a manifest: {exc}", documentation_file) from exc

    try:
        manifest = Manifest.from_fields(fields)
    except ValueError as exc:
        raise MetadataError(str(exc), documentation_file) from exc

    if action is not None and not manifest.matches(action):
        raise MetadataError(
            f"manifest {manifest.name}:{manifest.version} does not match action {action}",
            documentation_file,
        )
    return manifest

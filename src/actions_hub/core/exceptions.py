"""Action hub exceptions.

Every failure the build pipeline can report derives from :class:`HubError`.
"""

from __future__ import annotations

from pathlib import Path


class HubError(Exception):
    """Base class for build pipeline failures."""


class ScanError(HubError):
    """The repository comparison could not be performed.

    Raised for an invalid git reference, a path that is not a repository, or a
    missing git executable. Fatal to the run.
    """


class MetadataError(HubError):
    """An action's README could not be turned into a manifest.

    Attributes:
        path: README that failed to open or parse
    """

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else None
        if self.path is not None:
            message = f"{message} ({self.path})"
        super().__init__(message)


class BuildError(HubError):
    """The remote build service reported a failure for one image.

    Attributes:
        image_tag: image reference that was being built
        returncode: buildctl exit status, None when the process never ran
        stderr: tail of buildctl's diagnostic output
    """

    def __init__(
        self,
        message: str,
        image_tag: str,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        self.image_tag = image_tag
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{image_tag}: {message}")


class BuildCancelledError(BuildError):
    """The in-flight build was interrupted by a cancellation request."""

"""Multi-platform image builds on a remote BuildKit daemon.

Each request becomes one ``buildctl build`` invocation; BuildKit parallelizes
across the requested platforms itself.
"""

from __future__ import annotations

import json
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .exceptions import BuildCancelledError, BuildError

DEFAULT_BUILDKIT_ADDR = "unix:///run/buildkit/buildkitd.sock"
# linux/arm/v6 takes too long to build to be a default
DEFAULT_PLATFORMS = ("linux/amd64", "linux/arm64", "linux/arm/v7")

_STDERR_TAIL_LINES = 20


def parse_platforms(value: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Split a comma separated platform list, keeping first occurrence order."""
    items = value.split(",") if isinstance(value, str) else value
    platforms: list[str] = []
    for item in items:
        item = item.strip()
        if item and item not in platforms:
            platforms.append(item)
    return tuple(platforms)


@dataclass(frozen=True)
class BuildRequest:
    context_path: Path
    recipe_path: Path
    image_tag: str
    platforms: tuple[str, ...]
    push: bool = False
    no_cache: bool = False
    daemon_address: str = DEFAULT_BUILDKIT_ADDR

    def __post_init__(self) -> None:
        if not self.platforms:
            raise ValueError("at least one target platform is required")


@dataclass(frozen=True)
class DispatchOutcome:
    image_tag: str
    platforms: tuple[str, ...]
    pushed: bool
    digest: str | None
    duration_seconds: float

    def to_dict(self) -> dict:
        return {
            "image_tag": self.image_tag,
            "platforms": list(self.platforms),
            "pushed": self.pushed,
            "digest": self.digest,
            "duration_seconds": round(self.duration_seconds, 3),
        }


def buildctl_command(request: BuildRequest, metadata_file: Path, buildctl: str = "buildctl") -> list[str]:
    """Translate a request into buildctl arguments."""
    push = "true" if request.push else "false"
    cmd = [
        buildctl,
        "--addr",
        request.daemon_address,
        "build",
        "--frontend",
        "dockerfile.v0",
        "--local",
        f"context={request.context_path}",
        "--local",
        f"dockerfile={request.recipe_path.parent}",
        "--opt",
        f"filename={request.recipe_path.name}",
        "--opt",
        f"platform={','.join(request.platforms)}",
        "--output",
        f"type=image,name={request.image_tag},push={push}",
        "--metadata-file",
        str(metadata_file),
    ]
    if request.no_cache:
        cmd.append("--no-cache")
    return cmd


def _read_digest(metadata_file: Path) -> str | None:
    try:
        data = json.loads(metadata_file.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data.get("containerimage.digest")


def _tail(text: str) -> str:
    return "\n".join(text.strip().splitlines()[-_STDERR_TAIL_LINES:])


class ImageDispatcher:
    """Submit BuildRequests to BuildKit, one blocking call at a time.

    Args:
        buildctl: buildctl executable name or path
        poll_interval: seconds between cancellation checks while a build runs
        kill_timeout: seconds to wait after terminate() before kill()
        log: loguru logger to report progress on (defaults to the global logger)
    """

    def __init__(
        self,
        buildctl: str = "buildctl",
        poll_interval: float = 0.5,
        kill_timeout: float = 10.0,
        log=None,
    ) -> None:
        self.log = log if log is not None else logger
        self.buildctl = buildctl
        self.poll_interval = poll_interval
        self.kill_timeout = kill_timeout

    def dispatch(self, request: BuildRequest, cancel: threading.Event | None = None) -> DispatchOutcome:
        """Build (and optionally push) one multi-architecture image.

        Raises:
            BuildError: the daemon reported a failure, or the inputs are missing
            BuildCancelledError: ``cancel`` was set while the build was running
        """
        for label, path in (("build context", request.context_path), ("Dockerfile", request.recipe_path)):
            if not path.exists():
                raise BuildError(f"{label} not found: {path}", request.image_tag)

        self.log.info(
            f"Building {request.image_tag} for {','.join(request.platforms)} "
            f"(push={request.push}, no_cache={request.no_cache})"
        )
        started = time.monotonic()
        with tempfile.TemporaryDirectory(prefix="actions-hub-") as tmp:
            metadata_file = Path(tmp) / "metadata.json"
            cmd = buildctl_command(request, metadata_file, self.buildctl)
            returncode, stderr = self._run(cmd, request.image_tag, cancel)
            if returncode != 0:
                raise BuildError(
                    f"buildctl exited with status {returncode}: {_tail(stderr)}",
                    request.image_tag,
                    returncode=returncode,
                    stderr=_tail(stderr),
                )
            digest = _read_digest(metadata_file)

        outcome = DispatchOutcome(
            image_tag=request.image_tag,
            platforms=request.platforms,
            pushed=request.push,
            digest=digest,
            duration_seconds=time.monotonic() - started,
        )
        self.log.info(f"Built {request.image_tag} in {outcome.duration_seconds:.1f}s (digest={digest or 'unknown'})")
        return outcome

    def _run(self, cmd: list[str], image_tag: str, cancel: threading.Event | None) -> tuple[int, str]:
        self.log.debug(f"Running {' '.join(cmd)}")
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)
        except OSError as exc:
            raise BuildError(f"unable to start {cmd[0]}: {exc}", image_tag) from exc

        # the with block closes stderr and reaps the process on every exit path
        with proc:
            # stderr is drained on a thread so the poll loop can watch for cancellation
            chunks: list[str] = []
            reader = threading.Thread(target=lambda: chunks.append(proc.stderr.read()), daemon=True)
            reader.start()

            while True:
                try:
                    proc.wait(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    if cancel is not None and cancel.is_set():
                        self._stop(proc)
                        reader.join(timeout=self.kill_timeout)
                        self.log.warning(
                            f"Cancelled build of {image_tag}; the BuildKit daemon may finish work it already started"
                        )
                        raise BuildCancelledError("build cancelled", image_tag) from None

            reader.join()
        return proc.returncode, "".join(chunks)

    def _stop(self, proc: subprocess.Popen) -> None:
        proc.terminate()
        try:
            proc.wait(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

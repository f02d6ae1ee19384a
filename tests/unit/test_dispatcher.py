from __future__ import annotations

import stat
import subprocess
import threading
from pathlib import Path

import pytest

from actions_hub.core import dispatcher as dispatcher_module
from actions_hub.core.dispatcher import (
    BuildRequest,
    ImageDispatcher,
    buildctl_command,
    parse_platforms,
)
from actions_hub.core.exceptions import BuildCancelledError, BuildError

SUCCESS_SCRIPT = """#!/bin/sh
echo "$@" > "{args_file}"
while [ $# -gt 0 ]; do
  if [ "$1" = "--metadata-file" ]; then
    echo '{{"containerimage.digest": "sha256:feedface"}}' > "$2"
  fi
  shift
done
exit 0
"""

FAILURE_SCRIPT = """#!/bin/sh
echo "error: failed to solve: process did not complete successfully" >&2
exit 1
"""

SLOW_SCRIPT = """#!/bin/sh
exec sleep 30
"""


def _fake_buildctl(tmp_path: Path, body: str) -> str:
    script = tmp_path / "buildctl"
    script.write_text(body, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


@pytest.fixture
def request_(tmp_path: Path, make_action) -> BuildRequest:
    action_dir = make_action(tmp_path / "actions", "foo", "v1.0.0")
    return BuildRequest(
        context_path=action_dir,
        recipe_path=action_dir / "Dockerfile",
        image_tag="quay.io/tinkerbell-actions/foo:v1.0.0",
        platforms=("linux/amd64", "linux/arm64"),
        push=True,
        daemon_address="tcp://buildkitd:1234",
    )


def test_parse_platforms_dedups_and_strips() -> None:
    assert parse_platforms(" linux/amd64, linux/arm64,,linux/amd64") == ("linux/amd64", "linux/arm64")
    assert parse_platforms(["linux/arm/v7"]) == ("linux/arm/v7",)


def test_build_request_requires_platforms(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="platform"):
        BuildRequest(tmp_path, tmp_path / "Dockerfile", "repo/foo:v1", platforms=())


def test_buildctl_command(request_: BuildRequest, tmp_path: Path) -> None:
    cmd = buildctl_command(request_, tmp_path / "meta.json")

    assert cmd[:4] == ["buildctl", "--addr", "tcp://buildkitd:1234", "build"]
    assert f"context={request_.context_path}" in cmd
    assert f"dockerfile={request_.context_path}" in cmd
    assert "filename=Dockerfile" in cmd
    assert "platform=linux/amd64,linux/arm64" in cmd
    assert "type=image,name=quay.io/tinkerbell-actions/foo:v1.0.0,push=true" in cmd
    assert "--no-cache" not in cmd


def test_buildctl_command_no_cache_and_no_push(request_: BuildRequest, tmp_path: Path) -> None:
    req = BuildRequest(
        context_path=request_.context_path,
        recipe_path=request_.recipe_path,
        image_tag=request_.image_tag,
        platforms=request_.platforms,
        push=False,
        no_cache=True,
    )
    cmd = buildctl_command(req, tmp_path / "meta.json")
    assert cmd[-1] == "--no-cache"
    assert "type=image,name=quay.io/tinkerbell-actions/foo:v1.0.0,push=false" in cmd


def test_dispatch_success_reads_digest(request_: BuildRequest, tmp_path: Path) -> None:
    args_file = tmp_path / "args.txt"
    buildctl = _fake_buildctl(tmp_path, SUCCESS_SCRIPT.format(args_file=args_file))

    outcome = ImageDispatcher(buildctl=buildctl, poll_interval=0.05).dispatch(request_)

    assert outcome.image_tag == request_.image_tag
    assert outcome.pushed is True
    assert outcome.digest == "sha256:feedface"
    assert outcome.platforms == ("linux/amd64", "linux/arm64")
    assert "--addr tcp://buildkitd:1234 build" in args_file.read_text(encoding="utf-8")


def test_dispatch_failure_wraps_stderr(request_: BuildRequest, tmp_path: Path) -> None:
    buildctl = _fake_buildctl(tmp_path, FAILURE_SCRIPT)

    with pytest.raises(BuildError, match="failed to solve") as excinfo:
        ImageDispatcher(buildctl=buildctl, poll_interval=0.05).dispatch(request_)

    assert excinfo.value.returncode == 1
    assert excinfo.value.image_tag == request_.image_tag


def test_dispatch_missing_recipe(request_: BuildRequest) -> None:
    request_.recipe_path.unlink()
    with pytest.raises(BuildError, match="Dockerfile not found"):
        ImageDispatcher().dispatch(request_)


def test_dispatch_missing_buildctl(request_: BuildRequest, tmp_path: Path) -> None:
    with pytest.raises(BuildError, match="unable to start"):
        ImageDispatcher(buildctl=str(tmp_path / "no-such-buildctl")).dispatch(request_)


def test_dispatch_cancel_terminates_build(request_: BuildRequest, tmp_path: Path) -> None:
    buildctl = _fake_buildctl(tmp_path, SLOW_SCRIPT)
    cancel = threading.Event()
    cancel.set()

    dispatcher = ImageDispatcher(buildctl=buildctl, poll_interval=0.05, kill_timeout=2.0)
    with pytest.raises(BuildCancelledError):
        dispatcher.dispatch(request_, cancel=cancel)


def test_dispatch_cancel_closes_pipes_and_reaps(
    request_: BuildRequest, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    started: list[subprocess.Popen] = []

    class RecordingPopen(subprocess.Popen):
        def __init__(self, *args, **kwargs) -> None:
            super().__init__(*args, **kwargs)
            started.append(self)

    monkeypatch.setattr(dispatcher_module.subprocess, "Popen", RecordingPopen)
    buildctl = _fake_buildctl(tmp_path, SLOW_SCRIPT)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(BuildCancelledError):
        ImageDispatcher(buildctl=buildctl, poll_interval=0.05, kill_timeout=2.0).dispatch(request_, cancel=cancel)

    [proc] = started
    assert proc.stderr.closed
    assert proc.returncode is not None


def test_dispatch_logs_through_given_logger(request_: BuildRequest, tmp_path: Path) -> None:
    messages: list[str] = []

    class RecordingLog:
        def info(self, message: str) -> None:
            messages.append(message)

        debug = warning = info

    buildctl = _fake_buildctl(tmp_path, SUCCESS_SCRIPT.format(args_file=tmp_path / "args.txt"))
    ImageDispatcher(buildctl=buildctl, poll_interval=0.05, log=RecordingLog()).dispatch(request_)

    assert any(m.startswith("Built quay.io/tinkerbell-actions/foo:v1.0.0") for m in messages)

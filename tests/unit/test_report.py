from __future__ import annotations

import json
from pathlib import Path

from actions_hub.core.dispatcher import DispatchOutcome
from actions_hub.core.exceptions import BuildError
from actions_hub.core.locator import Action
from actions_hub.core.orchestrator import ActionOutcome, BuildOptions, RunResult
from actions_hub.report import create_run_report, write_run_report


def test_dry_run_report_has_no_outcomes() -> None:
    result = RunResult(actions=[Action("foo", "v1")], dry_run=True)

    report = create_run_report(BuildOptions(dry_run=True), result)

    assert report["run_info"]["dry_run"] is True
    assert report["run_info"]["failure_policy"] == "abort"
    assert report["actions"] == [{"name": "foo", "version": "v1"}]
    assert report["succeeded"] is True
    assert "outcomes" not in report


def test_report_records_each_outcome(tmp_path: Path) -> None:
    foo, bar = Action("foo", "v1"), Action("bar", "v2")
    result = RunResult(
        actions=[bar, foo],
        outcomes=[
            ActionOutcome(bar, "repo/bar:v2.0.0", error=BuildError("boom", "repo/bar:v2.0.0")),
            ActionOutcome(foo, skipped=True),
        ],
    )

    report = create_run_report(BuildOptions(container_repo="repo"), result)
    path = tmp_path / "nested" / "report.json"
    write_run_report(report, path)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["succeeded"] is False
    assert [o["status"] for o in data["outcomes"]] == ["failed", "skipped"]
    assert data["outcomes"][0]["error"] == "repo/bar:v2.0.0: boom"


def test_built_outcome_serialized() -> None:
    foo = Action("foo", "v1")
    outcome = DispatchOutcome("repo/foo:v1.0.0", ("linux/amd64",), True, "sha256:1", 1.23456)
    result = RunResult(actions=[foo], outcomes=[ActionOutcome(foo, "repo/foo:v1.0.0", outcome=outcome)])

    entry = create_run_report(BuildOptions(), result)["outcomes"][0]

    assert entry["status"] == "built"
    assert entry["outcome"] == {
        "image_tag": "repo/foo:v1.0.0",
        "platforms": ["linux/amd64"],
        "pushed": True,
        "digest": "sha256:1",
        "duration_seconds": 1.235,
    }

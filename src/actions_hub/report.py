"""Run report (JSON) for one ``build`` invocation."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from actions_hub import __version__
from actions_hub.core.orchestrator import BuildOptions, RunResult


def create_run_report(options: BuildOptions, result: RunResult) -> dict:
    """Summarize a run.

    Args:
        options: options the run was started with
        result: what the Orchestrator returned

    Returns:
        Report dictionary
    """
    report = {
        "run_info": {
            "built_at": datetime.now(UTC).isoformat(),
            "hub_version": __version__,
            "git_ref": options.git_ref,
            "container_repo": options.container_repo,
            "platforms": list(options.platforms),
            "push": options.push,
            "dry_run": options.dry_run,
            "failure_policy": options.failure_policy.value,
        },
        "actions": [{"name": a.name, "version": a.version} for a in result.actions],
        "succeeded": result.succeeded,
        "cancelled": result.cancelled,
    }

    # Listing and empty runs have no outcomes
    if result.outcomes:
        report["outcomes"] = [o.to_dict() for o in result.outcomes]

    return report


def write_run_report(report: dict, output_path: Path) -> None:
    """Save the report as JSON.

    Args:
        report: dictionary from create_run_report
        output_path: JSON file to write; parent directories are created
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, ensure_ascii=False)

    logger.info(f"Run report written to {output_path}")

"""Defaults for the ``build`` command from a YAML file and the environment."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from loguru import logger

from actions_hub.core.dispatcher import DEFAULT_BUILDKIT_ADDR

BUILDKIT_HOST_ENV = "BUILDKIT_HOST"

# keys accepted in the config file, mirroring the CLI flags
CONFIG_KEYS = {
    "context",
    "container_repo",
    "dry_run",
    "no_cache",
    "push",
    "git_ref",
    "buildkit_addr",
    "platforms",
    "failure_policy",
    "report",
}


def default_buildkit_addr() -> str:
    """Daemon address from $BUILDKIT_HOST, falling back to the local buildkitd socket."""
    return os.environ.get(BUILDKIT_HOST_ENV) or DEFAULT_BUILDKIT_ADDR


def load_config(config_yml: Path) -> dict:
    """Read build defaults from a YAML file.

    The file holds a mapping of flag names (dashes or underscores)::

        container-repo: ghcr.io/example/actions
        platforms: [linux/amd64, linux/arm64]
        failure-policy: continue

    Args:
        config_yml: path to the YAML file

    Returns:
        Mapping of argparse destination names to values
    """
    with open(config_yml, encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"{config_yml} must contain a YAML mapping")

    values = {}
    for key, value in config.items():
        dest = str(key).replace("-", "_")
        if dest not in CONFIG_KEYS:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        if dest == "platforms" and isinstance(value, list):
            value = ",".join(str(v) for v in value)
        values[dest] = value

    logger.info(f"Loaded {len(values)} settings from {config_yml}")
    return values

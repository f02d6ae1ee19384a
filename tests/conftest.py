from __future__ import annotations

from pathlib import Path

import pytest
from loguru import logger

README_TEMPLATE = """---
slug: {name}
name: {name}
version: {version}
description: "{name} action"
tags: disk, install
maintainers: Jane Doe <jane@example.com>
createdAt: "2021-03-01T15:00:00.000Z"
---

# {title}

Does things to disks.
"""


def write_action(actions_root: Path, name: str, version: str, readme: str | None = None) -> Path:
    """Create ``actions_root/<name>/<version>`` with a README and a Dockerfile."""
    action_dir = actions_root / name / version
    action_dir.mkdir(parents=True, exist_ok=True)
    if readme is None:
        readme = README_TEMPLATE.format(name=name, version=version, title=name.capitalize())
    (action_dir / "README.md").write_text(readme, encoding="utf-8")
    (action_dir / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
    return action_dir


@pytest.fixture
def log_messages() -> list[str]:
    """Capture loguru messages emitted while the test runs."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def make_action():
    return write_action

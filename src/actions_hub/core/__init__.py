"""Change detection, manifest derivation and image dispatch.

- locator: changed ``actions/<name>/<version>`` directories
- manifest: README → package manifest
- dispatcher: multi-platform image builds on a BuildKit daemon
- orchestrator: the ``build`` control loop
"""

from .dispatcher import BuildRequest, DispatchOutcome, ImageDispatcher
from .exceptions import BuildCancelledError, BuildError, HubError, MetadataError, ScanError
from .locator import Action, locate
from .manifest import FrontMatterParser, Manifest, ManifestParser, derive
from .orchestrator import FailurePolicy, Orchestrator, RunResult, RunState

__all__ = [
    "Action",
    "locate",
    "Manifest",
    "ManifestParser",
    "FrontMatterParser",
    "derive",
    "BuildRequest",
    "DispatchOutcome",
    "ImageDispatcher",
    "FailurePolicy",
    "Orchestrator",
    "RunResult",
    "RunState",
    "HubError",
    "ScanError",
    "MetadataError",
    "BuildError",
    "BuildCancelledError",
]

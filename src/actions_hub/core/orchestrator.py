"""The ``build`` control loop: scan, derive manifests, dispatch builds."""

from __future__ import annotations

import functools
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from loguru import logger

from .dispatcher import DEFAULT_BUILDKIT_ADDR, DEFAULT_PLATFORMS, BuildRequest, DispatchOutcome, ImageDispatcher
from .exceptions import BuildCancelledError, BuildError
from .locator import ACTIONS_DIR, Action, locate
from .manifest import README_FILE, Manifest, derive

RECIPE_FILE = "Dockerfile"
DEFAULT_CONTAINER_REPO = "quay.io/tinkerbell-actions"
DEFAULT_GIT_REF = "HEAD^@"


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    EMPTY = "empty"
    LISTING = "listing"
    BUILDING = "building"
    DONE = "done"


class FailurePolicy(str, Enum):
    """What to do with the remaining actions after a build fails."""

    ABORT = "abort"
    CONTINUE = "continue"


@dataclass(frozen=True)
class BuildOptions:
    context: Path = Path(".")
    container_repo: str = DEFAULT_CONTAINER_REPO
    dry_run: bool = False
    push: bool = False
    no_cache: bool = False
    git_ref: str = DEFAULT_GIT_REF
    buildkit_addr: str = DEFAULT_BUILDKIT_ADDR
    platforms: tuple[str, ...] = DEFAULT_PLATFORMS
    failure_policy: FailurePolicy = FailurePolicy.ABORT

    @property
    def actions_path(self) -> Path:
        return Path(self.context) / ACTIONS_DIR


@dataclass
class ActionOutcome:
    action: Action
    image_tag: str | None = None
    outcome: DispatchOutcome | None = None
    error: BuildError | None = None
    skipped: bool = False

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        if self.error is not None:
            return "cancelled" if isinstance(self.error, BuildCancelledError) else "failed"
        return "built"

    def to_dict(self) -> dict:
        return {
            "name": self.action.name,
            "version": self.action.version,
            "status": self.status,
            "image_tag": self.image_tag,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class RunResult:
    actions: list[Action]
    dry_run: bool = False
    outcomes: list[ActionOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failures(self) -> list[BuildError]:
        return [o.error for o in self.outcomes if o.error is not None and not isinstance(o.error, BuildCancelledError)]

    @property
    def succeeded(self) -> bool:
        return not self.failures and not self.cancelled


Locate = Callable[[Path, str, str], list[Action]]
Derive = Callable[[Path, Action], Manifest]


class Orchestrator:
    """Single-use driver for one ``build`` run.

    Collaborators are injected so the loop can run without git or BuildKit.
    ScanError and MetadataError propagate to the caller; BuildError is logged
    and handled according to ``options.failure_policy``.
    """

    def __init__(
        self,
        options: BuildOptions,
        *,
        log=None,
        locator: Locate | None = None,
        deriver: Derive | None = None,
        dispatcher: ImageDispatcher | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.options = options
        self.log = log if log is not None else logger.bind(component="orchestrator")
        self.locator = locator or functools.partial(locate, log=self.log)
        self.deriver = deriver or derive
        self.dispatcher = dispatcher or ImageDispatcher(log=self.log)
        self.cancel = cancel or threading.Event()
        self.state = RunState.IDLE

    def run(self) -> RunResult:
        """Scan for changed actions, then list or build them.

        Returns:
            RunResult with the discovered actions and per-action outcomes

        Raises:
            ScanError: the repository comparison failed
            MetadataError: a README is missing or incomplete; nothing has been dispatched
            RuntimeError: the instance was already run
        """
        if self.state is not RunState.IDLE:
            raise RuntimeError("Orchestrator instances are single-use")

        opts = self.options
        self.state = RunState.SCANNING
        try:
            actions = self.locator(Path(opts.context), ACTIONS_DIR, opts.git_ref)
        except Exception:
            self.state = RunState.DONE
            raise

        result = RunResult(actions=list(actions), dry_run=opts.dry_run)
        try:
            if not actions:
                self.state = RunState.EMPTY
                self.log.info("No actions were modified since the provided git reference")
            elif opts.dry_run:
                self.state = RunState.LISTING
                self.log.info("The following actions were modified and need to be rebuilt:")
                for action in actions:
                    self.log.info(str(action))
            else:
                self.state = RunState.BUILDING
                self._build_all(result)
        finally:
            self.state = RunState.DONE
        return result

    def _build_all(self, result: RunResult) -> None:
        # every README is validated before the first dispatch
        prepared = [(action, self._prepare(action)) for action in result.actions]

        pending: list[Action] = []
        for i, (action, request) in enumerate(prepared):
            if self.cancel.is_set():
                self.log.warning(f"Cancellation requested, not starting {action}")
                result.cancelled = True
                pending = result.actions[i:]
                break

            outcome = self._dispatch(action, request)
            result.outcomes.append(outcome)
            if outcome.error is None:
                continue
            if isinstance(outcome.error, BuildCancelledError):
                result.cancelled = True
                pending = result.actions[i + 1 :]
                break
            self.log.error(str(outcome.error))
            if self.options.failure_policy is FailurePolicy.ABORT:
                pending = result.actions[i + 1 :]
                break

        if pending:
            self.log.warning(f"Skipping {len(pending)} remaining action(s): {', '.join(map(str, pending))}")
            result.outcomes.extend(ActionOutcome(action=a, skipped=True) for a in pending)

    def _prepare(self, action: Action) -> BuildRequest:
        """Derive the manifest of ``action`` and resolve its BuildRequest.

        Raises:
            MetadataError: the README is missing or incomplete
        """
        opts = self.options
        action_context = action.path(opts.actions_path)

        manifest = self.deriver(action_context / README_FILE, action)
        return BuildRequest(
            context_path=action_context,
            recipe_path=action_context / RECIPE_FILE,
            image_tag=manifest.image_tag(opts.container_repo),
            platforms=tuple(opts.platforms),
            push=opts.push,
            no_cache=opts.no_cache,
            daemon_address=opts.buildkit_addr,
        )

    def _dispatch(self, action: Action, request: BuildRequest) -> ActionOutcome:
        try:
            outcome = self.dispatcher.dispatch(request, cancel=self.cancel)
        except BuildError as exc:
            return ActionOutcome(action=action, image_tag=request.image_tag, error=exc)
        return ActionOutcome(action=action, image_tag=request.image_tag, outcome=outcome)

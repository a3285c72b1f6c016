"""Action execution: one pull/push/merge through the backend, and the push commit gate."""

import logging
import threading
from collections.abc import Callable

from gitshlc.core.environments import resolve
from gitshlc.db.models import (
    ActionError,
    ActionKind,
    ActionOutcome,
    ActionRequest,
    ActionState,
    EnvKey,
    ErrorOrigin,
    Mode,
    Project,
    Severity,
    SshParams,
    ToolHints,
)
from gitshlc.integrations.backend import BackendUnavailableError

logger = logging.getLogger(__name__)


class ActionValidationError(ValueError):
    """Raised when an action is refused before the backend is contacted."""


class ActionInProgressError(RuntimeError):
    """Raised when an action is requested while another one is running."""


def parse_action(action: str | ActionKind) -> ActionKind:
    try:
        return ActionKind(action)
    except ValueError:
        raise ActionValidationError(f"Unknown action: {action}") from None


def require_commit_message(message: str | None) -> str:
    msg = (message or "").strip()
    if not msg:
        raise ActionValidationError("A commit message is required to push")
    return msg


def unreachable_outcome(env_key: EnvKey, action: ActionKind, mode: Mode, exc: Exception) -> ActionOutcome:
    return ActionOutcome(
        ok=False,
        env_key=env_key.value,
        action=action.value,
        steps=(),
        error=ActionError(
            severity=Severity.ERROR,
            code="LOCAL-0001",
            message="execution backend unavailable",
            detail=str(exc),
            origin=ErrorOrigin.LOCAL,
        ),
        mode=mode.value,
    )


class ActionExecutor:
    """Runs one action at a time against the backend.

    State moves idle -> running -> succeeded | failed. A second call while
    running raises ActionInProgressError instead of interleaving.
    """

    def __init__(self, backend):
        self.backend = backend
        self.state = ActionState.IDLE
        self._guard = threading.Lock()

    @property
    def running(self) -> bool:
        return self.state is ActionState.RUNNING

    def run(
        self,
        project: Project,
        env_key: EnvKey,
        action: str | ActionKind,
        mode: Mode,
        tool_hints: ToolHints,
        ssh: SshParams,
        commit_message: str | None = None,
    ) -> ActionOutcome:
        action = parse_action(action)
        message = require_commit_message(commit_message) if action is ActionKind.PUSH else None

        if not self._guard.acquire(blocking=False):
            raise ActionInProgressError("Another action is already running")

        self.state = ActionState.RUNNING
        try:
            resolved = resolve(project, env_key, mode, action)
            request = ActionRequest(
                mode=mode,
                env_key=env_key,
                action=action,
                local_path=resolved.local_path,
                remote_path=resolved.remote_path,
                branch=resolved.branch,
                tool_hints=tool_hints,
                ssh=ssh if mode is Mode.SSH else SshParams(),
                merge_from_branch=resolved.merge_from_branch,
                commit_message=message,
            )
            logger.info("Running %s on %s/%s (%s)", action.value, project.id, env_key.value, mode.value)

            try:
                result = self.backend.run_action(request)
            except (BackendUnavailableError, OSError) as e:
                logger.exception("Backend unavailable for %s on %s", action.value, project.id)
                outcome = unreachable_outcome(env_key, action, mode, e)
            else:
                outcome = ActionOutcome(
                    ok=bool(result.ok),
                    env_key=env_key.value,
                    action=action.value,
                    steps=tuple(result.steps),
                    error=result.error,
                    mode=mode.value,
                )
                if not outcome.ok:
                    code = outcome.error.code if outcome.error else "-"
                    logger.warning(
                        "%s on %s/%s failed (%s) after %d steps",
                        action.value, project.id, env_key.value, code, len(outcome.steps),
                    )

            self.state = ActionState.SUCCEEDED if outcome.ok else ActionState.FAILED
            return outcome
        except BaseException:
            self.state = ActionState.FAILED
            raise
        finally:
            self._guard.release()


class CommitGate:
    """Holds a push until a commit message is supplied.

    `confirm()` validates the message, tears the gate down and only then
    hands `(project_id, message)` to `on_confirm`, so a failed push is
    never retried with the old message.
    """

    def __init__(self, on_confirm: Callable[[str, str], ActionOutcome]):
        self._on_confirm = on_confirm
        self.project_id: str | None = None
        self.message = ""

    @property
    def pending(self) -> bool:
        return self.project_id is not None

    def request_push(self, project_id: str) -> None:
        self.project_id = project_id
        self.message = ""

    def set_message(self, message: str) -> None:
        self.message = message or ""

    def cancel(self) -> None:
        self.project_id = None
        self.message = ""

    def confirm(self, message: str | None = None) -> ActionOutcome:
        if message is not None:
            self.set_message(message)
        if self.project_id is None:
            raise ActionValidationError("No push is waiting for a commit message")
        msg = require_commit_message(self.message)

        project_id = self.project_id
        self.cancel()
        return self._on_confirm(project_id, msg)

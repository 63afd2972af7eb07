"""
External command execution.

Every process the launcher spawns (wineboot, winetricks, regedit, user
scripts, the game itself) goes through execute_command so timeouts,
dry-run and mandatory-failure semantics are uniform.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

EnvPairs = Sequence[tuple[str, str]]

SCRIPT_TIMEOUT_SECS = 600


class StepStatus(str, Enum):
    SKIPPED = "Skipped"
    SUCCESS = "Success"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def is_failure(self) -> bool:
        return self in (StepStatus.FAILED, StepStatus.TIMED_OUT)


class SkipReason(str, Enum):
    """Why a step was not executed."""
    DRY_RUN = "dry-run"
    CACHED = "cached"
    PRIOR_MANDATORY_FAILURE = "prior-mandatory-failure"


@dataclass
class ExternalCommand:
    """A named command to run with optional timeout."""
    name: str
    program: str
    args: list[str] = field(default_factory=list)
    timeout_secs: Optional[int] = None
    cwd: Optional[str] = None
    mandatory: bool = False


@dataclass
class CommandResult:
    """Outcome of one ExternalCommand."""
    name: str
    program: str
    args: list[str]
    mandatory: bool
    status: StepStatus
    exit_code: Optional[int] = None
    duration_ms: int = 0
    error: Optional[str] = None
    skip_reason: Optional[SkipReason] = None

    @property
    def failed(self) -> bool:
        return self.status.is_failure

    @property
    def aborts_pipeline(self) -> bool:
        return self.mandatory and self.failed

    @classmethod
    def skipped(cls, command: ExternalCommand, reason: SkipReason, note: str | None = None) -> CommandResult:
        return cls(
            name=command.name,
            program=command.program,
            args=list(command.args),
            mandatory=command.mandatory,
            status=StepStatus.SKIPPED,
            error=note,
            skip_reason=reason,
        )


def merge_env(env_pairs: EnvPairs, base: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Overlay ordered env pairs on top of the inherited process environment."""
    env = dict(os.environ if base is None else base)
    for key, value in env_pairs:
        env[key] = value
    return env


def execute_command(command: ExternalCommand, env_pairs: EnvPairs, dry_run: bool) -> CommandResult:
    """
    Run one external command.

    Args:
        command: What to run
        env_pairs: Environment entries layered over the inherited environment
        dry_run: Never spawn; return a Skipped result instead

    Returns:
        CommandResult with Success, Failed, TimedOut or Skipped status.
        Spawn errors are reported as Failed rather than raised.
    """
    if dry_run:
        logger.info("dry-run: would run %s: %s %s", command.name, command.program, " ".join(command.args))
        return CommandResult.skipped(command, SkipReason.DRY_RUN, "dry-run mode")

    logger.debug("running %s: %s %s (cwd=%s)", command.name, command.program, command.args, command.cwd)
    start = time.monotonic()

    def _result(status: StepStatus, exit_code: Optional[int] = None, error: Optional[str] = None) -> CommandResult:
        return CommandResult(
            name=command.name,
            program=command.program,
            args=list(command.args),
            mandatory=command.mandatory,
            status=status,
            exit_code=exit_code,
            duration_ms=int((time.monotonic() - start) * 1000),
            error=error,
        )

    try:
        completed = subprocess.run(
            [command.program, *command.args],
            cwd=command.cwd,
            env=merge_env(env_pairs),
            timeout=command.timeout_secs,
        )
    except subprocess.TimeoutExpired:
        logger.warning("%s timed out after %ss", command.name, command.timeout_secs)
        return _result(StepStatus.TIMED_OUT, error=f"timeout after {command.timeout_secs}s")
    except OSError as e:
        logger.warning("%s failed to start: %s", command.name, e)
        return _result(StepStatus.FAILED, error=str(e))

    status = StepStatus.SUCCESS if completed.returncode == 0 else StepStatus.FAILED
    if status is StepStatus.FAILED:
        logger.warning("%s exited with code %s", command.name, completed.returncode)
    return _result(status, exit_code=completed.returncode)


def execute_sequence(commands: Sequence[ExternalCommand], env_pairs: EnvPairs, dry_run: bool) -> list[CommandResult]:
    """Run commands in order; after a mandatory failure the rest are skipped."""
    results: list[CommandResult] = []
    stop = False
    for command in commands:
        if stop:
            results.append(CommandResult.skipped(
                command, SkipReason.PRIOR_MANDATORY_FAILURE, "skipped due to prior mandatory failure",
            ))
            continue

        result = execute_command(command, env_pairs, dry_run)
        if result.aborts_pipeline:
            stop = True
        results.append(result)
    return results


def has_mandatory_failures(results: Sequence[CommandResult]) -> bool:
    return any(result.aborts_pipeline for result in results)


def run_script(
    name: str,
    script: str,
    cwd: str,
    env_pairs: EnvPairs,
    dry_run: bool,
    mandatory: bool,
) -> Optional[CommandResult]:
    """Run a user shell script through `bash -lc`; None when the script is blank."""
    if not script.strip():
        return None

    command = ExternalCommand(
        name=name,
        program="bash",
        args=["-lc", script],
        timeout_secs=SCRIPT_TIMEOUT_SECS,
        cwd=cwd,
        mandatory=mandatory,
    )
    return execute_command(command, env_pairs, dry_run)

"""
Play and winecfg flows.

Each stage is its own type and can only be built from the stage before it:

    Validated -> Probed -> RuntimeSelected -> PrefixPlanned -> PrefixApplied
              -> RegistryApplied -> LaunchBuilt -> Launched

The flows record every partial result in an outcome object so a caller can
report what happened up to the point of an abort.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from luthier.config import GameConfig, RuntimeCandidate
from luthier.doctor import Doctor, DoctorReport, HostProbe
from luthier.host import HostEnvironment, HostError
from luthier.launch import LaunchCommandPlan, LaunchComposer, LaunchError, build_winecfg_command
from luthier.lock import InstanceLock, LockError
from luthier.mounts import MountError, MountResult, apply_folder_mounts
from luthier.overrides import OverrideError, RuntimeOverrides, apply_runtime_overrides, load_overrides
from luthier.paths import PathError, resolve_relative_path
from luthier.prefix import (
    PrefixError,
    PrefixSetupContext,
    build_prefix_setup_context,
    build_prefix_setup_plan,
    execute_prefix_setup,
)
from luthier.process import (
    CommandResult,
    ExternalCommand,
    StepStatus,
    execute_command,
    has_mandatory_failures,
    run_script,
)
from luthier.registry import RegistryApplier, RegistryError
from luthier.validation import Issue, validate

logger = logging.getLogger(__name__)


class PipelineAbort(Exception):
    """A stage refused to continue; the message is the abort reason."""
    pass


# --- stages ---

@dataclass(frozen=True)
class Validated:
    config: GameConfig
    game_root: Path
    host: HostEnvironment
    dry_run: bool
    issues: list[Issue] = field(default_factory=list)


@dataclass(frozen=True)
class Probed:
    validated: Validated
    report: DoctorReport


@dataclass(frozen=True)
class RuntimeSelected:
    probed: Probed
    runtime: RuntimeCandidate


@dataclass(frozen=True)
class PrefixPlanned:
    selected: RuntimeSelected
    context: PrefixSetupContext


@dataclass(frozen=True)
class PrefixApplied:
    planned: PrefixPlanned
    results: list[CommandResult]


@dataclass(frozen=True)
class RegistryApplied:
    prefix: PrefixApplied
    registry: Optional[CommandResult]
    winecfg: Optional[CommandResult]


@dataclass(frozen=True)
class LaunchBuilt:
    registry: RegistryApplied
    mounts: list[MountResult]
    plan: LaunchCommandPlan


@dataclass(frozen=True)
class Launched:
    built: LaunchBuilt
    pre_launch: Optional[CommandResult]
    game: CommandResult
    post_launch: Optional[CommandResult]


@dataclass
class PlayOutcome:
    """Everything a flow computed, plus why it stopped early if it did."""
    issues: list[Issue] = field(default_factory=list)
    missing_files: list[str] = field(default_factory=list)
    report: Optional[DoctorReport] = None
    prefix_context: Optional[PrefixSetupContext] = None
    prefix_results: list[CommandResult] = field(default_factory=list)
    registry: Optional[CommandResult] = None
    winecfg: Optional[CommandResult] = None
    mounts: list[MountResult] = field(default_factory=list)
    launch_plan: Optional[LaunchCommandPlan] = None
    pre_launch: Optional[CommandResult] = None
    game: Optional[CommandResult] = None
    post_launch: Optional[CommandResult] = None
    abort_reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None

    @property
    def status(self) -> str:
        if self.aborted:
            return "aborted"
        if self.game is None:
            return "pending"
        if self.game.status is StepStatus.SUCCESS:
            return "completed"
        if self.game.status is StepStatus.SKIPPED:
            return "skipped"
        return "failed"

    @property
    def ok(self) -> bool:
        return not self.aborted and self.game is not None and not self.game.failed


# --- transitions ---

def check_integrity(config: GameConfig, game_root: Path) -> list[str]:
    """Relative paths of the executable and integrity files missing under game_root."""
    missing = []
    for relative in [config.relative_exe_path, *config.integrity_files]:
        if not resolve_relative_path(game_root, relative).exists():
            missing.append(relative)
    return missing


def validate_stage(
    config: GameConfig,
    game_root: Path,
    host: HostEnvironment,
    dry_run: Optional[bool] = None,
) -> Validated:
    issues = validate(config)
    for issue in issues:
        logger.warning("config issue %s at %s: %s", issue.code, issue.field, issue.message)
    return Validated(
        config=config,
        game_root=Path(game_root),
        host=host,
        dry_run=host.dry_run if dry_run is None else dry_run,
        issues=issues,
    )


def probe_stage(validated: Validated, probe: Optional[HostProbe] = None) -> Probed:
    report = Doctor(validated.host, probe).run(validated.config)
    return Probed(validated=validated, report=report)


def select_runtime_stage(probed: Probed) -> RuntimeSelected:
    if probed.report.is_blocked:
        raise PipelineAbort("doctor returned BLOCKER")
    runtime = probed.report.runtime.selected_runtime
    if runtime is None:
        raise PipelineAbort("no runtime selected")
    logger.info("selected runtime %s", runtime.value)
    return RuntimeSelected(probed=probed, runtime=runtime)


def plan_prefix_stage(selected: RuntimeSelected) -> PrefixPlanned:
    validated = selected.probed.validated
    plan = build_prefix_setup_plan(validated.config, validated.host)
    context = build_prefix_setup_context(validated.config, plan, selected.probed.report, validated.host)
    return PrefixPlanned(selected=selected, context=context)


def apply_prefix_stage(planned: PrefixPlanned) -> PrefixApplied:
    dry_run = planned.selected.probed.validated.dry_run
    results = execute_prefix_setup(planned.context, dry_run)
    return PrefixApplied(planned=planned, results=results)


def apply_registry_stage(prefix: PrefixApplied, outcome: PlayOutcome) -> RegistryApplied:
    """Import registry keys, then the winecfg overlay. A failed import aborts."""
    if has_mandatory_failures(prefix.results):
        raise PipelineAbort("mandatory prefix setup command failed")

    selected = prefix.planned.selected
    validated = selected.probed.validated
    applier = RegistryApplier(
        validated.config, selected.probed.report, prefix.planned.context.prefix_root, validated.host,
    )

    outcome.registry = applier.apply_registry_keys(validated.dry_run)
    if outcome.registry is not None and outcome.registry.failed:
        raise PipelineAbort("registry import failed")

    outcome.winecfg = applier.apply_winecfg(validated.game_root, validated.dry_run)
    if outcome.winecfg is not None and outcome.winecfg.failed:
        raise PipelineAbort("winecfg override apply failed")

    return RegistryApplied(prefix=prefix, registry=outcome.registry, winecfg=outcome.winecfg)


def build_launch_stage(registry: RegistryApplied, outcome: PlayOutcome) -> LaunchBuilt:
    planned = registry.prefix.planned
    probed = planned.selected.probed
    validated = probed.validated

    try:
        outcome.mounts = apply_folder_mounts(
            validated.config, validated.game_root, planned.context.effective_prefix, validated.dry_run,
        )
    except MountError as e:
        raise PipelineAbort(f"folder mount setup failed: {e}") from e

    plan = LaunchComposer(validated.config, probed.report, validated.host).build(
        validated.game_root, planned.context.prefix_root,
    )
    return LaunchBuilt(registry=registry, mounts=outcome.mounts, plan=plan)


def launch_stage(built: LaunchBuilt, outcome: PlayOutcome) -> Launched:
    """Pre-launch script (mandatory), the game, then the post-launch script."""
    validated = built.registry.prefix.planned.selected.probed.validated
    plan = built.plan
    scripts = validated.config.scripts

    outcome.pre_launch = run_script(
        "pre-launch-script", scripts.pre_launch, plan.cwd, plan.env, validated.dry_run, mandatory=True,
    )
    if outcome.pre_launch is not None and outcome.pre_launch.failed:
        raise PipelineAbort("pre-launch script failed")

    game = ExternalCommand(
        name="game-launch",
        program=plan.program,
        args=list(plan.args),
        cwd=plan.cwd,
        mandatory=True,
    )
    logger.info("starting game: %s", " ".join(plan.argv))
    outcome.game = execute_command(game, plan.env, validated.dry_run)

    outcome.post_launch = run_script(
        "post-launch-script", scripts.post_launch, plan.cwd, plan.env, validated.dry_run, mandatory=False,
    )
    return Launched(
        built=built, pre_launch=outcome.pre_launch, game=outcome.game, post_launch=outcome.post_launch,
    )


# --- flows ---

# Module errors that end a flow with an abort reason instead of a traceback.
FLOW_ERRORS = (
    PipelineAbort, HostError, PathError, PrefixError, RegistryError, LaunchError, LockError, OverrideError,
)


def _prepare(
    config: GameConfig,
    game_root: Path,
    host: HostEnvironment,
    dry_run: Optional[bool],
    probe: Optional[HostProbe],
    outcome: PlayOutcome,
) -> PrefixApplied:
    validated = validate_stage(config, game_root, host, dry_run)
    outcome.issues = validated.issues

    probed = probe_stage(validated, probe)
    outcome.report = probed.report
    selected = select_runtime_stage(probed)

    planned = plan_prefix_stage(selected)
    outcome.prefix_context = planned.context
    applied = apply_prefix_stage(planned)
    outcome.prefix_results = applied.results
    return applied


def play(
    config: GameConfig,
    game_root: Path,
    host: Optional[HostEnvironment] = None,
    overrides: Optional[RuntimeOverrides] = None,
    dry_run: Optional[bool] = None,
    probe: Optional[HostProbe] = None,
) -> PlayOutcome:
    """
    Run the full launch pipeline for one game.

    Args:
        config: Embedded or on-disk game configuration
        game_root: Directory containing the game files
        host: Host environment; the process environment when None
        overrides: Runtime overrides; loaded from disk when None
        dry_run: Plan without spawning; LUTHIER_DRY_RUN decides when None
        probe: Host probe used by the doctor

    Returns:
        PlayOutcome with all partial results; abort_reason set on abort
    """
    host = host or HostEnvironment.from_os()
    game_root = Path(game_root)
    outcome = PlayOutcome()

    try:
        if overrides is None:
            overrides = load_overrides(host, config.exe_hash)
        config = apply_runtime_overrides(config, overrides)

        with InstanceLock.for_game(host, config.exe_hash):
            outcome.missing_files = check_integrity(config, game_root)
            if outcome.missing_files:
                raise PipelineAbort(
                    "BLOCKER: required game files are missing: " + ", ".join(outcome.missing_files)
                )

            applied = _prepare(config, game_root, host, dry_run, probe, outcome)
            registry = apply_registry_stage(applied, outcome)
            built = build_launch_stage(registry, outcome)
            outcome.launch_plan = built.plan
            launch_stage(built, outcome)
    except FLOW_ERRORS as e:
        outcome.abort_reason = str(e)
        logger.error("play aborted: %s", e)

    return outcome


def run_winecfg(
    config: GameConfig,
    game_root: Path,
    host: Optional[HostEnvironment] = None,
    dry_run: Optional[bool] = None,
    probe: Optional[HostProbe] = None,
) -> PlayOutcome:
    """Prepare the prefix like play does, then open winecfg instead of the game."""
    host = host or HostEnvironment.from_os()
    outcome = PlayOutcome()

    try:
        with InstanceLock.for_game(host, config.exe_hash):
            applied = _prepare(config, Path(game_root), host, dry_run, probe, outcome)
            apply_registry_stage(applied, outcome)

            validated = applied.planned.selected.probed.validated
            plan = build_winecfg_command(config, outcome.report, applied.planned.context.prefix_root, host)
            outcome.launch_plan = plan
            command = ExternalCommand(
                name="winecfg",
                program=plan.program,
                args=list(plan.args),
                cwd=plan.cwd,
                mandatory=True,
            )
            outcome.game = execute_command(command, plan.env, validated.dry_run)
    except FLOW_ERRORS as e:
        outcome.abort_reason = str(e)
        logger.error("winecfg aborted: %s", e)

    return outcome

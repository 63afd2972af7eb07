"""
Wine prefix bootstrap planning.

The generic plan only knows about wineboot and winetricks. The runtime
adapter rewrites those commands for Proton or UMU before anything runs.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from luthier.config import FeatureState, GameConfig, RuntimeCandidate
from luthier.doctor import DoctorReport
from luthier.host import HostEnvironment
from luthier.paths import compact_key
from luthier.process import CommandResult, ExternalCommand, StepStatus, execute_sequence
from luthier.runtime_env import EnvPairs, build_prefix_env, effective_prefix_path

logger = logging.getLogger(__name__)

WINEBOOT_TIMEOUT_SECS = 120
WINETRICKS_TIMEOUT_SECS = 900

WINETRICKS_SKIPPED_NOTE = "all configured winetricks verbs already installed; skipping winetricks step"


class PrefixError(Exception):
    """Error planning or preparing a Wine prefix."""
    pass


@dataclass
class PrefixSetupPlan:
    """Ordered bootstrap commands for one prefix."""
    prefix_path: Path
    needs_init: bool
    commands: list[ExternalCommand] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def command(self, name: str) -> Optional[ExternalCommand]:
        for command in self.commands:
            if command.name == name:
                return command
        return None


@dataclass
class PrefixSetupContext:
    """A runtime-adapted plan together with the environment it runs in."""
    plan: PrefixSetupPlan
    env: EnvPairs
    prefix_root: Path
    effective_prefix: Path
    runtime: RuntimeCandidate


def prefix_path_for_hash(host: HostEnvironment, exe_hash: str) -> Path:
    return host.luthier_data_dir() / "prefixes" / compact_key(exe_hash)


def build_prefix_setup_plan(config: GameConfig, host: HostEnvironment) -> PrefixSetupPlan:
    """Runtime-agnostic plan: wineboot when the prefix is missing, then winetricks."""
    prefix_path = prefix_path_for_hash(host, config.exe_hash)
    plan = PrefixSetupPlan(prefix_path=prefix_path, needs_init=not prefix_path.exists())

    if plan.needs_init:
        plan.commands.append(ExternalCommand(
            name="wineboot-init",
            program="wineboot",
            args=["--init"],
            timeout_secs=WINEBOOT_TIMEOUT_SECS,
            mandatory=True,
        ))

    if config.dependencies:
        policy = config.requirements.winetricks
        if policy.is_enabled:
            plan.commands.append(ExternalCommand(
                name="winetricks",
                program="winetricks",
                args=["-q", *config.dependencies],
                timeout_secs=WINETRICKS_TIMEOUT_SECS,
                mandatory=policy is FeatureState.MANDATORY_ON,
            ))
        elif policy is FeatureState.MANDATORY_OFF:
            plan.notes.append("winetricks disabled by policy; dependencies list will not be installed")
        else:
            plan.notes.append(
                "winetricks optional-off by default; dependencies list not installed unless override is provided"
            )

    if config.registry_keys:
        plan.notes.append("registry_keys present: apply after prefix init")

    return plan


def read_installed_winetricks_verbs(effective_prefix: Path) -> set[str]:
    try:
        raw = (effective_prefix / "winetricks.log").read_text(errors="replace")
    except OSError:
        return set()
    return {line.strip() for line in raw.splitlines() if line.strip()}


def split_winetricks_args(args: list[str]) -> tuple[list[str], list[str]]:
    """Leading '-' arguments are flags; everything from the first verb on is a verb."""
    flags: list[str] = []
    verbs: list[str] = []
    for arg in args:
        if not verbs and arg.startswith("-"):
            flags.append(arg)
        else:
            verbs.append(arg)
    return flags, verbs


def filter_installed_winetricks_verbs(plan: PrefixSetupPlan, effective_prefix: Path) -> PrefixSetupPlan:
    """Drop verbs already listed in winetricks.log; drop the step when none remain."""
    installed = read_installed_winetricks_verbs(effective_prefix)
    out = copy.deepcopy(plan)
    if not installed:
        return out

    commands = []
    for command in out.commands:
        if command.program != "winetricks":
            commands.append(command)
            continue

        flags, verbs = split_winetricks_args(command.args)
        if not verbs:
            commands.append(command)
            continue

        remaining = [verb for verb in verbs if verb not in installed]
        if not remaining:
            logger.info("winetricks verbs already installed: %s", ", ".join(verbs))
            out.notes.append(WINETRICKS_SKIPPED_NOTE)
            continue
        command.args = flags + remaining
        commands.append(command)

    out.commands = commands
    return out


def adapt_plan_for_runtime(
    plan: PrefixSetupPlan,
    report: DoctorReport,
    runtime: RuntimeCandidate,
) -> PrefixSetupPlan:
    """
    Rewrite wineboot and winetricks for the selected runtime.

    ProtonNative runs `proton run wineboot ...`; ProtonUmu replaces wineboot
    with `umu-run createprefix` and routes winetricks through umu-run
    without `-q`. Wine plans are returned unchanged.

    Raises:
        PrefixError: if the runtime's binary is missing from the report
    """
    out = copy.deepcopy(plan)
    if not runtime.is_proton:
        return out

    proton = report.runtime.proton
    if not proton:
        raise PrefixError("selected Proton runtime but proton path is missing")
    umu_run = report.runtime.umu_run
    if runtime is RuntimeCandidate.PROTON_UMU and not umu_run:
        raise PrefixError("selected ProtonUmu runtime but umu-run path is missing")

    for command in out.commands:
        if command.program == "wineboot":
            if runtime is RuntimeCandidate.PROTON_NATIVE:
                command.program = proton
                command.args = ["run", "wineboot", *command.args]
            else:
                command.program = umu_run
                command.args = ["createprefix"]
        elif command.program == "winetricks" and runtime is RuntimeCandidate.PROTON_UMU:
            # umu-run winetricks does not accept -q.
            command.program = umu_run
            command.args = ["winetricks", *(arg for arg in command.args if arg != "-q")]

    return out


def build_prefix_setup_context(
    config: GameConfig,
    plan: PrefixSetupPlan,
    report: DoctorReport,
    host: HostEnvironment,
) -> PrefixSetupContext:
    """Filter, adapt and attach the bootstrap environment to a generic plan."""
    runtime = report.runtime.selected_runtime
    if runtime is None:
        raise PrefixError("doctor did not select a runtime")

    effective = effective_prefix_path(plan.prefix_path, runtime)
    env = build_prefix_env(config, report, runtime, plan.prefix_path, host)
    filtered = filter_installed_winetricks_verbs(plan, effective)
    adapted = adapt_plan_for_runtime(filtered, report, runtime)
    logger.info(
        "prefix plan for %s: %d command(s), needs_init=%s",
        runtime.value, len(adapted.commands), adapted.needs_init,
    )
    return PrefixSetupContext(
        plan=adapted,
        env=env,
        prefix_root=plan.prefix_path,
        effective_prefix=effective,
        runtime=runtime,
    )


def execute_prefix_setup(context: PrefixSetupContext, dry_run: bool) -> list[CommandResult]:
    """Create the prefix root if needed, then run the plan's commands in order."""
    plan = context.plan
    if plan.needs_init and not dry_run:
        try:
            context.prefix_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("cannot create prefix dir %s: %s", context.prefix_root, e)
            return [CommandResult(
                name="prefix-dir-create",
                program="mkdir",
                args=[str(context.prefix_root)],
                mandatory=True,
                status=StepStatus.FAILED,
                error=str(e),
            )]

    return execute_sequence(plan.commands, context.env.as_list(), dry_run)

"""
Launch command composition.

Builds the final game invocation by wrapping the runtime command from the
inside out: runtime, gamemoderun, mangohud, user wrappers, then gamescope.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from luthier.config import FeatureState, GameConfig, GamescopeConfig, RuntimeCandidate
from luthier.doctor import DoctorReport
from luthier.host import HostEnvironment, is_executable_file
from luthier.paths import PathError, resolve_relative_path
from luthier.runtime_env import (
    EnvPairs,
    apply_runtime_defaults,
    base_env_for_prefix,
    effective_prefix_path,
    is_protected_key,
)

logger = logging.getLogger(__name__)

MODERN_FILTER_MARKER = "-F, --filter"

GAMEMODE_UMU_SKIPPED_NOTE = (
    "GameMode wrapper skipped automatically for ProtonUmu (UMU/pressure-vessel may fail to load "
    "libgamemode and spam stderr). Set LUTHIER_FORCE_GAMEMODE_UMU=1 to force gamemoderun."
)


class LaunchError(Exception):
    """Error building a launch or winecfg command."""
    pass


@dataclass(frozen=True)
class LaunchCommandPlan:
    """A fully composed process invocation. Fields cannot be reassigned once built."""
    program: str
    args: list[str]
    cwd: str
    runtime: RuntimeCandidate
    env: list[tuple[str, str]] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


def selected_runtime(report: DoctorReport) -> RuntimeCandidate:
    runtime = report.runtime.selected_runtime
    if runtime is None:
        raise LaunchError("doctor did not select a runtime")
    return runtime


def runtime_program(report: DoctorReport, runtime: RuntimeCandidate) -> str:
    """Binary that runs the selected runtime; a missing path is an error."""
    program = report.runtime.binary_for(runtime)
    if not program:
        label = {
            RuntimeCandidate.PROTON_UMU: "umu-run",
            RuntimeCandidate.PROTON_NATIVE: "proton",
            RuntimeCandidate.WINE: "wine",
        }[runtime]
        raise LaunchError(f"selected runtime {runtime.value} but {label} path is missing")
    return program


def wine_tool(report: DoctorReport, tool: str) -> str:
    """A Wine helper (winecfg, regedit) next to the wine binary, else by name."""
    wine = report.runtime.wine
    if not wine:
        raise LaunchError("selected runtime Wine but wine path is missing")
    candidate = Path(wine).parent / tool
    return str(candidate) if candidate.exists() else tool


def compose_runtime_env(
    config: GameConfig,
    report: DoctorReport,
    runtime: RuntimeCandidate,
    prefix_root: Path,
    host: HostEnvironment,
    game_root: Optional[Path] = None,
    set_ld_preload_default: bool = False,
) -> EnvPairs:
    """
    Environment for any process running inside the game's prefix.

    Layers the prefix base, Steam compat paths, runtime defaults and PRIME
    offload, then user custom_vars with orchestration keys filtered out.
    """
    env = base_env_for_prefix(effective_prefix_path(prefix_root, runtime))
    if runtime.is_proton:
        env.remove("PROTON_VERB")
        env.set("STEAM_COMPAT_DATA_PATH", str(prefix_root))

    apply_runtime_defaults(
        env, config, report, runtime, host,
        game_root=game_root,
        set_ld_preload_default=set_ld_preload_default,
    )

    if config.environment.prime_offload.is_enabled:
        env.set("__NV_PRIME_RENDER_OFFLOAD", "1")
        env.set("__GLX_VENDOR_LIBRARY_NAME", "nvidia")
        env.set("DRI_PRIME", "1")

    for key, value in config.environment.custom_vars.items():
        if is_protected_key(key):
            logger.warning("ignoring protected custom env var %s", key)
            continue
        env.set(key, value)
    return env


def resolve_wrapper_executable(executable: str, host: HostEnvironment) -> Optional[str]:
    executable = executable.strip()
    if not executable:
        return None
    if "/" in executable:
        path = Path(executable)
        return str(path) if is_executable_file(path) else None
    found = host.which(executable)
    return str(found) if found else None


def gamescope_supports_modern_filter(gamescope: str) -> bool:
    """True when `gamescope --help` lists the -F/--filter option."""
    try:
        output = subprocess.run([gamescope, "--help"], capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("gamescope --help failed: %s", e)
        return False
    return MODERN_FILTER_MARKER in output.stdout or MODERN_FILTER_MARKER in output.stderr


def parse_resolution(raw: str) -> Optional[tuple[int, int]]:
    """Parse 'WxH' (either case of x) into a pair of non-negative ints."""
    width, sep, height = raw.strip().replace("X", "x").partition("x")
    if not sep:
        return None
    width, height = width.strip(), height.strip()
    if not (width.isdigit() and height.isdigit()):
        return None
    return int(width), int(height)


def _parse_dimension(raw: str) -> Optional[int]:
    value = raw.strip()
    return int(value) if value.isdigit() else None


def upscale_flags(method: str, modern_filter: bool) -> list[str]:
    method = method.strip().lower()
    if not method:
        return []
    if modern_filter:
        if method in ("fsr", "nis"):
            return ["-F", method]
        if method in ("integer", "stretch"):
            return ["-S", method]
        return []
    return {"fsr": ["-U"], "nis": ["-Y"], "integer": ["-i"]}.get(method, [])


def gamescope_args(
    gamescope: GamescopeConfig,
    modern_filter: bool,
    mangohud: bool,
    host: HostEnvironment,
    notes: list[str],
) -> list[str]:
    """Flags placed between the gamescope binary and the '--' separator."""
    args: list[str] = []
    game_width = _parse_dimension(gamescope.game_width)
    game_height = _parse_dimension(gamescope.game_height)
    if game_width is not None:
        args += ["-w", str(game_width)]
    if game_height is not None:
        args += ["-h", str(game_height)]

    output_width = _parse_dimension(gamescope.output_width)
    output_height = _parse_dimension(gamescope.output_height)
    if (output_width is None or output_height is None) and gamescope.resolution:
        legacy = parse_resolution(gamescope.resolution)
        if legacy:
            output_width = legacy[0] if output_width is None else output_width
            output_height = legacy[1] if output_height is None else output_height
    if output_width is not None:
        args += ["-W", str(output_width)]
    if output_height is not None:
        args += ["-H", str(output_height)]

    scaling = any(v is not None for v in (game_width, game_height, output_width, output_height))
    if scaling or gamescope.fsr:
        method = gamescope.upscale_method.strip()
        if gamescope.fsr and not method:
            method = "fsr"
        args += upscale_flags(method, modern_filter)

    window_type = gamescope.window_type.strip()
    if window_type == "fullscreen":
        args.append("-f")
        if host.wayland_session:
            notes.append(
                "Gamescope fullscreen flag (-f) was applied. In nested Wayland sessions, compositors "
                "may still present the gamescope surface as a window."
            )
    elif window_type == "borderless":
        args.append("-b")

    if gamescope.enable_limiter:
        if gamescope.fps_limiter.strip():
            args += ["-r", gamescope.fps_limiter.strip()]
        if gamescope.fps_limiter_no_focus.strip():
            args += ["-o", gamescope.fps_limiter_no_focus.strip()]

    if gamescope.force_grab_cursor:
        args.append("--force-grab-cursor")
    if mangohud:
        args.append("--mangoapp")

    # Quoted arguments are not preserved.
    args += gamescope.additional_options.split()
    return args


class LaunchComposer:
    """
    Composes the game command and its environment.

    Usage:
        composer = LaunchComposer(config, report, host)
        plan = composer.build(game_root, prefix_root)
    """

    def __init__(self, config: GameConfig, report: DoctorReport, host: HostEnvironment):
        self.config = config
        self.report = report
        self.host = host

    def build(self, game_root: Path, prefix_root: Path) -> LaunchCommandPlan:
        config = self.config
        runtime = selected_runtime(self.report)
        program = runtime_program(self.report, runtime)

        try:
            game_exe = resolve_relative_path(game_root, config.relative_exe_path)
        except PathError as e:
            raise LaunchError(f"invalid relative_exe_path in payload: {e}") from e

        tokens = [program]
        if runtime is RuntimeCandidate.PROTON_NATIVE:
            tokens.append("run")
        tokens += [str(game_exe), *config.launch_args]

        notes: list[str] = []
        tokens = self._wrap_gamemode(tokens, runtime, notes)

        gamescope_active = config.environment.gamescope.state.is_enabled
        mangohud_active = config.requirements.mangohud.is_enabled
        if mangohud_active and not gamescope_active:
            mangohud = self.report.found_path("mangohud")
            if mangohud:
                tokens = [mangohud, *tokens]

        tokens = self._wrap_user_wrappers(tokens)

        if gamescope_active:
            gamescope = self.report.found_path("gamescope")
            if gamescope:
                flags = gamescope_args(
                    config.environment.gamescope,
                    gamescope_supports_modern_filter(gamescope),
                    mangohud_active,
                    self.host,
                    notes,
                )
                tokens = [gamescope, *flags, "--", *tokens]

        env = compose_runtime_env(
            config, self.report, runtime, prefix_root, self.host,
            game_root=game_root,
            set_ld_preload_default=True,
        )
        logger.info("launch command: %s", " ".join(tokens))
        return LaunchCommandPlan(
            program=tokens[0],
            args=tokens[1:],
            cwd=str(game_root),
            runtime=runtime,
            env=env.as_list(),
            notes=notes,
        )

    def _wrap_gamemode(self, tokens: list[str], runtime: RuntimeCandidate, notes: list[str]) -> list[str]:
        state = self.config.requirements.gamemode
        if not state.is_enabled:
            return tokens

        umu = runtime is RuntimeCandidate.PROTON_UMU
        forced = self.host.force_gamemode_umu
        if umu and state is FeatureState.OPTIONAL_ON and not forced:
            notes.append(GAMEMODE_UMU_SKIPPED_NOTE)
            return tokens

        gamemoderun = self.report.found_path("gamemoderun")
        if gamemoderun:
            if umu and forced:
                notes.append(
                    "GameMode wrapper forced for ProtonUmu by LUTHIER_FORCE_GAMEMODE_UMU=1; "
                    "compatibility depends on UMU/pressure-vessel runtime environment."
                )
            return [gamemoderun, *tokens]

        if umu and state is FeatureState.OPTIONAL_ON:
            notes.append("GameMode is enabled in payload, but gamemoderun was not found; continuing without GameMode.")
        return tokens

    def _wrap_user_wrappers(self, tokens: list[str]) -> list[str]:
        # Reverse order: the first declared wrapper ends up outermost.
        for wrapper in reversed(self.config.compatibility.wrapper_commands):
            if not wrapper.state.is_enabled:
                continue
            resolved = resolve_wrapper_executable(wrapper.executable, self.host)
            if resolved is None:
                if wrapper.state is FeatureState.MANDATORY_ON:
                    raise LaunchError(f"mandatory wrapper command '{wrapper.executable}' is not available")
                logger.info("optional wrapper %s not found; skipping", wrapper.executable)
                continue
            tokens = [resolved, *wrapper.args.split(), *tokens]
        return tokens


def build_launch_command(
    config: GameConfig,
    report: DoctorReport,
    game_root: Path,
    prefix_root: Path,
    host: Optional[HostEnvironment] = None,
) -> LaunchCommandPlan:
    """Convenience function composing the launch plan."""
    return LaunchComposer(config, report, host or HostEnvironment.from_os()).build(game_root, prefix_root)


def build_winecfg_command(
    config: GameConfig,
    report: DoctorReport,
    prefix_root: Path,
    host: Optional[HostEnvironment] = None,
) -> LaunchCommandPlan:
    """winecfg for the selected runtime, with the same environment the game gets."""
    host = host or HostEnvironment.from_os()
    runtime = selected_runtime(report)
    if runtime is RuntimeCandidate.PROTON_UMU:
        tokens = [runtime_program(report, runtime), "winecfg"]
    elif runtime is RuntimeCandidate.PROTON_NATIVE:
        tokens = [runtime_program(report, runtime), "run", "winecfg"]
    else:
        tokens = [wine_tool(report, "winecfg")]

    env = compose_runtime_env(config, report, runtime, prefix_root, host)
    return LaunchCommandPlan(
        program=tokens[0],
        args=tokens[1:],
        cwd=str(prefix_root),
        runtime=runtime,
        env=env.as_list(),
    )

"""
Host capability probe ("doctor").

Finds Proton, Wine and umu-run on the host, selects a runtime for the
configured policy and reports the status of every optional dependency.
A report is built fresh on each run and never persisted.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from luthier.config import FeatureState, GameConfig, RuntimeCandidate
from luthier.host import HostEnvironment, is_executable_file, is_truthy
from luthier.runtime import RuntimeAvailability, auto_select_runtime, select_runtime

logger = logging.getLogger(__name__)

PROTON_ROOTS = [
    ".config/heroic/tools/proton",
    ".var/app/com.heroicgameslauncher.hgl/config/heroic/tools/proton",
    ".local/share/Steam/compatibilitytools.d",
    ".steam/root/compatibilitytools.d",
    ".steam/steam/compatibilitytools.d",
    ".local/share/Steam/steamapps/common",
    ".steam/root/steamapps/common",
    ".steam/steam/steamapps/common",
]

AUX_RUNTIME_ROOTS = [
    ".config/heroic/tools/runtimes",
    ".var/app/com.heroicgameslauncher.hgl/config/heroic/tools/runtimes",
    ".local/share/Luthier/runtimes",
]

STEAM_RUNTIME_SCRIPTS = [
    ".local/share/Steam/ubuntu12_32/steam-runtime/run.sh",
    ".steam/root/ubuntu12_32/steam-runtime/run.sh",
    ".steam/steam/ubuntu12_32/steam-runtime/run.sh",
]

SYSTEM_LIBRARY_DIRS = [
    "/usr/lib",
    "/usr/lib64",
    "/usr/local/lib",
    "/usr/local/lib64",
    "/usr/lib/x86_64-linux-gnu",
    "/usr/lib/i386-linux-gnu",
    "/lib",
    "/lib64",
    "/lib/x86_64-linux-gnu",
    "/lib/i386-linux-gnu",
]

SYSTEM_WINE_PATHS = ["/usr/bin/wine", "/usr/local/bin/wine"]

GAMEMODE_LIBRARIES = ("libgamemode.so.0", "libgamemode.so")

WINEWAYLAND_DRIVERS = [
    "../lib/wine/x86_64-unix/winewayland.drv",
    "../lib64/wine/x86_64-unix/winewayland.drv",
    "../lib/wine/i386-unix/winewayland.drv",
    "../lib32/wine/i386-unix/winewayland.drv",
    "../lib/wine/winewayland.drv",
    "../lib64/wine/winewayland.drv",
]


class CheckStatus(str, Enum):
    """Severity of a doctor finding. Ranked BLOCKER > WARN > OK > INFO."""
    OK = "OK"
    WARN = "WARN"
    BLOCKER = "BLOCKER"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    CheckStatus.INFO: 0,
    CheckStatus.OK: 1,
    CheckStatus.WARN: 2,
    CheckStatus.BLOCKER: 3,
}


def worst_status(statuses: Iterable[CheckStatus]) -> CheckStatus:
    """Most severe status; INFO for an empty input."""
    result = CheckStatus.INFO
    for status in statuses:
        if status.rank > result.rank:
            result = status
    return result


@dataclass
class DependencyStatus:
    """Result of checking one dependency against its policy."""
    name: str
    state: Optional[FeatureState]
    status: CheckStatus
    found: bool
    resolved_path: Optional[str] = None
    note: str = ""


@dataclass
class RuntimeDiscovery:
    """Runtime binaries found on the host and the selected candidate."""
    proton: Optional[str] = None
    wine: Optional[str] = None
    umu_run: Optional[str] = None
    selected_runtime: Optional[RuntimeCandidate] = None
    runtime_status: CheckStatus = CheckStatus.INFO
    runtime_note: str = ""

    def binary_for(self, candidate: RuntimeCandidate) -> Optional[str]:
        """Path of the program that launches the given runtime."""
        if candidate is RuntimeCandidate.PROTON_UMU:
            return self.umu_run
        if candidate is RuntimeCandidate.PROTON_NATIVE:
            return self.proton
        return self.wine


@dataclass
class DoctorReport:
    generated_at: str
    has_embedded_config: bool
    runtime: RuntimeDiscovery
    dependencies: list[DependencyStatus] = field(default_factory=list)
    summary: CheckStatus = CheckStatus.INFO

    @property
    def is_blocked(self) -> bool:
        return self.summary is CheckStatus.BLOCKER

    def dependency(self, name: str) -> Optional[DependencyStatus]:
        for dep in self.dependencies:
            if dep.name == name:
                return dep
        return None

    def found_path(self, name: str) -> Optional[str]:
        """Resolved path of a dependency that was found, else None."""
        dep = self.dependency(name)
        if dep is None or not dep.found:
            return None
        return dep.resolved_path


@dataclass
class CapabilityProbe:
    supported: bool
    resolved_path: Optional[Path]
    note: str


def _str(path: Optional[Path]) -> Optional[str]:
    return str(path) if path is not None else None


def _modified(path: Path) -> float:
    """mtime of the proton binary's parent directory, 0 if unreadable."""
    try:
        return path.parent.stat().st_mtime
    except OSError:
        return 0.0


def _newest(candidates: Iterable[Path]) -> Optional[Path]:
    """Newest by parent mtime; ties go to the greater path."""
    best: Optional[Path] = None
    for candidate in candidates:
        if best is None or (_modified(candidate), str(candidate)) > (_modified(best), str(best)):
            best = candidate
    return best


def proton_from_path(path: Path) -> Optional[Path]:
    """The proton script for a path that is the script itself or its directory."""
    if is_executable_file(path):
        return path
    proton = path / "proton"
    if is_executable_file(proton):
        return proton
    return None


def proton_matches_version(proton: Path, requested: str) -> bool:
    """Fuzzy match: requested string inside the path, canonical path or parent name."""
    wanted = requested.strip().lower()
    if not wanted:
        return False
    if wanted in str(proton).lower():
        return True
    try:
        canonical = proton.resolve(strict=True)
    except OSError:
        return False
    return wanted in str(canonical).lower() or wanted in canonical.parent.name.lower()


class HostProbe:
    """
    Locates runtime binaries and tooling on the host.

    Usage:
        probe = HostProbe(HostEnvironment.from_os())
        proton, matched = probe.discover_proton("GE-Proton9-20")
        wine = probe.discover_wine()
    """

    def __init__(
        self,
        host: HostEnvironment,
        library_dirs: Optional[list[str]] = None,
        system_wine_paths: Optional[list[str]] = None,
    ):
        self.host = host
        self.library_dirs = SYSTEM_LIBRARY_DIRS if library_dirs is None else library_dirs
        self.system_wine_paths = SYSTEM_WINE_PATHS if system_wine_paths is None else system_wine_paths

    def _home_paths(self, relative: Iterable[str]) -> list[Path]:
        home = self.host.home
        if home is None:
            return []
        return [home / rel for rel in relative]

    def _tool_path_entries(self) -> list[Path]:
        raw = self.host.get("STEAM_COMPAT_TOOL_PATHS") or ""
        return [Path(p) for p in raw.split(os.pathsep) if p]

    def discover_umu(self) -> Optional[Path]:
        from_env = self.host.get_nonempty("UMU_RUNTIME")
        if from_env and is_executable_file(Path(from_env)):
            return Path(from_env)
        return self.host.which("umu-run")

    def discover_wine(self) -> Optional[Path]:
        from_env = self.host.get_nonempty("WINE")
        if from_env and is_executable_file(Path(from_env)):
            return Path(from_env)

        found = self.host.which("wine")
        if found:
            return found
        candidates = [Path(p) for p in self.system_wine_paths] + self._home_paths([".local/bin/wine"])
        for candidate in candidates:
            if is_executable_file(candidate):
                return candidate
        return None

    def proton_roots(self) -> list[Path]:
        return self._home_paths(PROTON_ROOTS)

    def _protons_in(self, root: Path) -> list[Path]:
        try:
            entries = list(root.iterdir())
        except OSError:
            return []
        return [p for p in (proton_from_path(e) for e in entries) if p is not None]

    def discover_latest_proton(self) -> Optional[Path]:
        """PROTONPATH, then STEAM_COMPAT_TOOL_PATHS, then the newest build in each known root."""
        from_env = self.host.get_nonempty("PROTONPATH")
        if from_env:
            found = proton_from_path(Path(from_env))
            if found:
                return found

        for entry in self._tool_path_entries():
            found = proton_from_path(entry)
            if found:
                return found

        for root in self.proton_roots():
            found = _newest(self._protons_in(root))
            if found:
                return found
        return None

    def find_proton_by_version(self, requested: str) -> Optional[Path]:
        """
        Resolve a requested Proton build.

        Order: the request as a direct path, PROTONPATH and
        STEAM_COMPAT_TOOL_PATHS when they match, then known roots where an
        exact directory-name match beats any fuzzy match.
        """
        direct = proton_from_path(Path(requested))
        if direct:
            return direct

        env_candidates = []
        from_env = self.host.get_nonempty("PROTONPATH")
        if from_env:
            env_candidates.append(Path(from_env))
        env_candidates.extend(self._tool_path_entries())
        for entry in env_candidates:
            found = proton_from_path(entry)
            if found and proton_matches_version(found, requested):
                return found

        wanted = requested.strip().lower()
        exact: list[Path] = []
        fuzzy: list[Path] = []
        for root in self.proton_roots():
            for proton in self._protons_in(root):
                if proton.parent.name.lower() == wanted:
                    exact.append(proton)
                elif proton_matches_version(proton, requested):
                    fuzzy.append(proton)

        return _newest(exact) or _newest(fuzzy)

    def discover_proton(self, requested: Optional[str]) -> tuple[Optional[Path], bool]:
        """Return (proton path, whether it matched the requested version)."""
        requested = (requested or "").strip()
        if requested:
            found = self.find_proton_by_version(requested)
            if found:
                return found, True
        return self.discover_latest_proton(), False

    def find_gamemode_library(self) -> Optional[Path]:
        found = self._ldconfig_lookup(GAMEMODE_LIBRARIES)
        if found:
            return found

        dirs: list[str] = []
        for var in ("LD_LIBRARY_PATH", "LIBRARY_PATH"):
            dirs.extend(p for p in (self.host.get(var) or "").split(os.pathsep) if p)
        dirs.extend(self.library_dirs)

        for directory in dirs:
            for name in GAMEMODE_LIBRARIES:
                candidate = Path(directory) / name
                if candidate.is_file():
                    return candidate
        return None

    def _ldconfig_lookup(self, names: Iterable[str]) -> Optional[Path]:
        ldconfig = self.host.which("ldconfig")
        if ldconfig is None:
            return None
        try:
            output = subprocess.run(
                [str(ldconfig), "-p"], capture_output=True, text=True, timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("ldconfig lookup failed: %s", e)
            return None
        if output.returncode != 0:
            return None

        for name in names:
            for line in output.stdout.splitlines():
                line = line.strip()
                if not line.startswith(name) or "=>" not in line:
                    continue
                candidate = Path(line.split("=>", 1)[1].strip())
                if candidate.is_file():
                    return candidate
        return None

    def _env_path(self, name: str) -> Optional[Path]:
        value = self.host.get_nonempty(name)
        if value is None:
            return None
        # A bare flag like STEAM_RUNTIME=1 names no location.
        if is_truthy(value) and "/" not in value:
            return None
        path = Path(value)
        return path if path.exists() else None

    def find_steam_runtime(self, runtime: RuntimeDiscovery) -> Optional[Path]:
        if runtime.selected_runtime is RuntimeCandidate.PROTON_UMU and runtime.umu_run:
            return Path(runtime.umu_run)

        found = self._env_path("STEAM_RUNTIME")
        if found:
            return found
        for command in ("steam-runtime-launch-client", "steam-runtime-launcher-service"):
            found = self.host.which(command)
            if found:
                return found
        for candidate in self._home_paths(STEAM_RUNTIME_SCRIPTS):
            if candidate.exists():
                return candidate
        return None

    def find_aux_runtime(self, env_var: str, folder_name: str) -> Optional[Path]:
        """EAC / BattlEye runtime from its env var or a known runtimes dir."""
        from_env = self.host.get_nonempty(env_var)
        if from_env and Path(from_env).exists():
            return Path(from_env)
        for root in self._home_paths(AUX_RUNTIME_ROOTS):
            candidate = root / folder_name
            if candidate.exists():
                return candidate
        return None

    def find_wine_wayland_driver(self, wine: Optional[str]) -> Optional[Path]:
        if not wine:
            return None
        bin_dir = Path(wine).parent
        for rel in WINEWAYLAND_DRIVERS:
            candidate = bin_dir / rel
            if candidate.exists():
                return candidate
        return None

    def query_wine_version(self, wine: Optional[str]) -> Optional[str]:
        if not wine:
            return None
        try:
            output = subprocess.run([wine, "--version"], capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("wine --version failed: %s", e)
            return None
        if output.returncode != 0:
            return None
        merged = (output.stdout + output.stderr).strip()
        return merged or None

    def find_by_rules(self, commands: list[str], env_vars: list[str], paths: list[str]) -> Optional[Path]:
        """Locate an extra dependency: a command in PATH, an env var path or an absolute path."""
        for command in commands:
            found = self.host.which(command.strip())
            if found:
                return found
        for key in env_vars:
            value = self.host.get(key.strip())
            if value and Path(value).exists():
                return Path(value)
        for raw in paths:
            if Path(raw).exists():
                return Path(raw)
        return None


def evaluate_component(name: str, state: Optional[FeatureState], resolved: Optional[Path]) -> DependencyStatus:
    """Map (policy state, presence) to a dependency status."""
    found = resolved is not None
    if state is FeatureState.MANDATORY_ON:
        status, note = (CheckStatus.OK, "required and available") if found else (CheckStatus.BLOCKER, "required but missing")
    elif state is FeatureState.MANDATORY_OFF:
        status, note = CheckStatus.INFO, "forced off by policy"
    elif state is FeatureState.OPTIONAL_ON:
        if found:
            status, note = CheckStatus.OK, "enabled in payload and available"
        else:
            status, note = CheckStatus.WARN, "enabled in payload but missing"
    elif state is FeatureState.OPTIONAL_OFF:
        availability = "available" if found else "missing"
        status, note = CheckStatus.INFO, f"not required by current payload ({availability})"
    else:
        status, note = (CheckStatus.OK, "available") if found else (CheckStatus.WARN, "not found")

    return DependencyStatus(
        name=name,
        state=state,
        status=status,
        found=found,
        resolved_path=_str(resolved),
        note=note,
    )


def evaluate_capability(name: str, state: FeatureState, probe: CapabilityProbe) -> DependencyStatus:
    """Like evaluate_component, with the probe's explanation appended to the note."""
    base = evaluate_component(name, state, probe.resolved_path if probe.supported else None)
    base.resolved_path = _str(probe.resolved_path)
    if state is not FeatureState.MANDATORY_OFF:
        base.note = f"{base.note} ({probe.note})"
    return base


def evaluate_gamemoderun(
    state: Optional[FeatureState],
    binary: Optional[Path],
    library: Optional[Path],
) -> DependencyStatus:
    """gamemoderun only counts as found when libgamemode is present too."""
    if state is FeatureState.MANDATORY_OFF or binary is None:
        return evaluate_component("gamemoderun", state, binary)
    if library is not None:
        return evaluate_component("gamemoderun", state, binary)

    status = evaluate_component("gamemoderun", state, None)
    status.resolved_path = str(binary)
    status.note = "gamemoderun executable found, but libgamemode is missing"
    return status


def evaluate_gamemode_under_umu(
    state: Optional[FeatureState],
    binary: Optional[Path],
    library: Optional[Path],
    umu_run: Optional[Path],
    forced: bool,
) -> DependencyStatus:
    """
    GameMode inside the UMU pressure-vessel container.

    Host checks cannot prove the library loads inside the sandbox, so a
    fully satisfied host never reports better than WARN/INFO here.
    """
    host_ok = binary is not None and library is not None and umu_run is not None
    resolved = _str(binary) or _str(umu_run)

    if state is FeatureState.MANDATORY_ON:
        if host_ok:
            status, note = CheckStatus.WARN, (
                "host checks passed, but ProtonUmu/pressure-vessel compatibility is runtime-dependent; "
                "mandatory policy prevents automatic gamemode fallback"
            )
        else:
            status, note = CheckStatus.BLOCKER, "ProtonUmu + GameMode is required, but host prerequisites are missing"
    elif state is FeatureState.OPTIONAL_ON:
        if not host_ok:
            status, note = CheckStatus.WARN, (
                "enabled in payload, but host GameMode prerequisites are missing (gamemoderun/libgamemode/umu-run)"
            )
        elif forced:
            status, note = CheckStatus.INFO, (
                "host checks passed; LUTHIER_FORCE_GAMEMODE_UMU is set, so gamemoderun will be used"
            )
        else:
            status, note = CheckStatus.INFO, (
                "host checks passed, but GameMode compatibility inside pressure-vessel is runtime-dependent; "
                "launcher will auto-skip gamemoderun (set LUTHIER_FORCE_GAMEMODE_UMU=1 to force)"
            )
    elif state is FeatureState.OPTIONAL_OFF:
        status, note = CheckStatus.INFO, "not required by current payload (ProtonUmu path)"
    elif state is FeatureState.MANDATORY_OFF:
        status, note = CheckStatus.INFO, "forced off by policy"
    else:
        status, note = CheckStatus.INFO, "ProtonUmu selected; GameMode compatibility inside pressure-vessel is runtime-dependent"

    return DependencyStatus(
        name="gamemode-umu-runtime",
        state=state,
        status=status,
        found=host_ok,
        resolved_path=resolved,
        note=note,
    )


class Doctor:
    """
    Runs host checks for an optional game configuration.

    Usage:
        report = Doctor(HostEnvironment.from_os()).run(config)
        if report.is_blocked:
            ...
    """

    def __init__(self, host: HostEnvironment, probe: Optional[HostProbe] = None):
        self.host = host
        self.probe = probe or HostProbe(host)

    def run(self, config: Optional[GameConfig]) -> DoctorReport:
        runtime = self.discover_runtime(config)
        dependencies = self.check_dependencies(config, runtime)
        summary = worst_status([runtime.runtime_status, *(d.status for d in dependencies)])

        logger.info(
            "doctor: runtime=%s status=%s summary=%s",
            runtime.selected_runtime.value if runtime.selected_runtime else None,
            runtime.runtime_status.value,
            summary.value,
        )
        return DoctorReport(
            generated_at=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            has_embedded_config=config is not None,
            runtime=runtime,
            dependencies=dependencies,
            summary=summary,
        )

    def discover_runtime(self, config: Optional[GameConfig]) -> RuntimeDiscovery:
        requested = config.runner.proton_version.strip() if config else ""
        proton, matched = self.probe.discover_proton(requested or None)
        wine = self.probe.discover_wine()
        umu = self.probe.discover_umu()
        logger.debug("probe: proton=%s (matched=%s) wine=%s umu=%s", proton, matched, wine, umu)

        available = RuntimeAvailability(proton=proton is not None, wine=wine is not None, umu=umu is not None)
        discovery = RuntimeDiscovery(proton=_str(proton), wine=_str(wine), umu_run=_str(umu))

        if config is None:
            discovery.selected_runtime = auto_select_runtime(available)
            if discovery.selected_runtime is None:
                discovery.runtime_status = CheckStatus.WARN
                discovery.runtime_note = "no runtime discovered (doctor without embedded config)"
                return discovery
            self._note_proton_match(discovery, requested, matched, strict=False)
            return discovery

        policy = config.requirements.runtime
        discovery.selected_runtime = select_runtime(policy, available, config.runner.runtime_preference)
        if discovery.selected_runtime is None:
            discovery.runtime_status = CheckStatus.BLOCKER
            discovery.runtime_note = "no runtime candidate available with current policy"
            return discovery

        self._note_proton_match(discovery, requested, matched, strict=policy.strict)
        return discovery

    @staticmethod
    def _note_proton_match(discovery: RuntimeDiscovery, requested: str, matched: bool, strict: bool) -> None:
        discovery.runtime_status = CheckStatus.OK
        discovery.runtime_note = "runtime candidate selected"
        if not discovery.selected_runtime.is_proton or not requested or not discovery.proton:
            return

        if matched:
            discovery.runtime_note = (
                f"runtime candidate selected (requested proton version '{requested}' found at {discovery.proton})"
            )
        elif strict:
            discovery.runtime_status = CheckStatus.BLOCKER
            discovery.runtime_note = (
                f"requested proton version '{requested}' not found and runtime strict mode is enabled "
                f"(fallback candidate path: {discovery.proton})"
            )
        else:
            discovery.runtime_status = CheckStatus.WARN
            discovery.runtime_note = (
                f"requested proton version '{requested}' not found; using fallback proton at {discovery.proton}"
            )

    def check_dependencies(self, config: Optional[GameConfig], runtime: RuntimeDiscovery) -> list[DependencyStatus]:
        probe = self.probe
        requirements = config.requirements if config else None
        gamemode_state = requirements.gamemode if requirements else None
        gamemoderun = self.host.which("gamemoderun")
        libgamemode = probe.find_gamemode_library()
        umu = Path(runtime.umu_run) if runtime.umu_run else None

        out = [
            evaluate_component("gamescope", requirements.gamescope if requirements else None, self.host.which("gamescope")),
            evaluate_gamemoderun(gamemode_state, gamemoderun, libgamemode),
            evaluate_component("libgamemode", gamemode_state, libgamemode),
            evaluate_component("mangohud", requirements.mangohud if requirements else None, self.host.which("mangohud")),
            evaluate_component("winetricks", requirements.winetricks if requirements else None, self.host.which("winetricks")),
            evaluate_component("umu-run", requirements.umu if requirements else None, umu),
        ]
        if config is None:
            return out

        compat = config.compatibility
        out.append(evaluate_component("steam-runtime", requirements.steam_runtime, probe.find_steam_runtime(runtime)))

        wayland = self._probe_wine_wayland(runtime)
        out.append(evaluate_capability("wine-wayland", compat.wine_wayland, wayland))
        out.append(evaluate_capability("hdr", compat.hdr, self._probe_hdr(compat.wine_wayland, wayland)))
        out.append(evaluate_capability("dxvk-nvapi", compat.auto_dxvk_nvapi, self._probe_nvapi(runtime)))
        out.append(evaluate_capability("staging", compat.staging, self._probe_staging(runtime)))

        if runtime.selected_runtime is RuntimeCandidate.PROTON_UMU and gamemode_state is not FeatureState.MANDATORY_OFF:
            out.append(evaluate_gamemode_under_umu(
                gamemode_state, gamemoderun, libgamemode, umu, self.host.force_gamemode_umu,
            ))

        out.append(evaluate_component(
            "eac-runtime",
            compat.easy_anti_cheat_runtime,
            probe.find_aux_runtime("PROTON_EAC_RUNTIME", "eac_runtime"),
        ))
        out.append(evaluate_component(
            "battleye-runtime",
            compat.battleye_runtime,
            probe.find_aux_runtime("PROTON_BATTLEYE_RUNTIME", "battleye_runtime"),
        ))

        for dep in config.extra_system_dependencies:
            found = probe.find_by_rules(dep.check_commands, dep.check_env_vars, dep.check_paths)
            out.append(evaluate_component(dep.name, dep.state, found))
        return out

    def _probe_wine_wayland(self, runtime: RuntimeDiscovery) -> CapabilityProbe:
        if not self.host.wayland_session:
            return CapabilityProbe(False, None, "Wayland session not detected")
        selected = runtime.selected_runtime
        if selected is None:
            return CapabilityProbe(False, None, "no runtime selected")
        if selected.is_proton:
            return CapabilityProbe(True, Path(runtime.proton), "selected runtime is Proton in a Wayland session")

        driver = self.probe.find_wine_wayland_driver(runtime.wine)
        if driver:
            return CapabilityProbe(True, driver, "winewayland driver was detected")
        return CapabilityProbe(False, Path(runtime.wine), "selected Wine runtime does not expose winewayland driver")

    @staticmethod
    def _probe_hdr(wine_wayland: FeatureState, wayland: CapabilityProbe) -> CapabilityProbe:
        if not wine_wayland.is_enabled:
            return CapabilityProbe(False, None, "HDR requires wine-wayland enabled")
        if not wayland.supported:
            return CapabilityProbe(False, None, f"wine-wayland support is unavailable ({wayland.note})")
        return CapabilityProbe(True, wayland.resolved_path, "wine-wayland support is available")

    @staticmethod
    def _probe_nvapi(runtime: RuntimeDiscovery) -> CapabilityProbe:
        selected = runtime.selected_runtime
        if selected is None:
            return CapabilityProbe(False, None, "no runtime selected")
        if selected.is_proton:
            return CapabilityProbe(True, Path(runtime.proton), "selected runtime is Proton")
        return CapabilityProbe(
            False, Path(runtime.wine), "selected runtime is Wine (NVAPI auto mode expects Proton runtime support)",
        )

    def _probe_staging(self, runtime: RuntimeDiscovery) -> CapabilityProbe:
        selected = runtime.selected_runtime
        if selected is None:
            return CapabilityProbe(False, None, "no runtime selected")
        if selected.is_proton:
            return CapabilityProbe(False, Path(runtime.proton), "staging requires a Wine runtime build, not Proton")

        wine = Path(runtime.wine)
        version = self.probe.query_wine_version(runtime.wine)
        if version is None:
            return CapabilityProbe(False, wine, "failed to query Wine version for staging support")
        if "staging" in version.lower():
            return CapabilityProbe(True, wine, f"Wine version indicates staging build ({version})")
        return CapabilityProbe(False, wine, f"Wine version does not indicate staging support ({version})")


def run_doctor(config: Optional[GameConfig], host: Optional[HostEnvironment] = None) -> DoctorReport:
    """Convenience function running the doctor against the current process environment."""
    return Doctor(host or HostEnvironment.from_os()).run(config)

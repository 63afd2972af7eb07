"""
Runtime environment composition shared by prefix setup and game launch.

Environment entries are kept as an ordered list of (key, value) pairs so the
composed environment can be shown to the user in a stable order.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional

from luthier.config import GameConfig, RuntimeCandidate
from luthier.doctor import DoctorReport
from luthier.host import HostEnvironment

# Keys user custom_vars may never override.
PROTECTED_KEYS = frozenset({
    "WINEPREFIX",
    "PROTON_VERB",
    "STEAM_COMPAT_DATA_PATH",
    "STEAM_COMPAT_CLIENT_INSTALL_PATH",
    "STEAM_COMPAT_INSTALL_PATH",
    "STEAM_COMPAT_APP_ID",
    "SteamAppId",
    "SteamGameId",
    "PROTONPATH",
    "GAMEID",
    "UMU_RUNTIME_UPDATE",
})


def is_protected_key(key: str) -> bool:
    return key in PROTECTED_KEYS or key.startswith("STEAM_COMPAT_")


class EnvPairs:
    """Ordered environment with in-place replacement of existing keys."""

    def __init__(self, pairs: Optional[list[tuple[str, str]]] = None):
        self._pairs: list[tuple[str, str]] = list(pairs or [])

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, key: object) -> bool:
        return any(k == key for k, _ in self._pairs)

    def get(self, key: str) -> Optional[str]:
        for k, v in self._pairs:
            if k == key:
                return v
        return None

    def set(self, key: str, value: str) -> None:
        for i, (k, _) in enumerate(self._pairs):
            if k == key:
                self._pairs[i] = (key, value)
                return
        self._pairs.append((key, value))

    def remove(self, key: str) -> None:
        self._pairs = [(k, v) for k, v in self._pairs if k != key]

    def prepend_path(self, directory: Path, fallback: str = "") -> None:
        existing = self.get("PATH")
        if existing is None:
            existing = fallback
        value = f"{directory}:{existing}" if existing else str(directory)
        self.set("PATH", value)

    def as_list(self) -> list[tuple[str, str]]:
        return list(self._pairs)


def base_env_for_prefix(prefix_path: Path) -> EnvPairs:
    return EnvPairs([("WINEPREFIX", str(prefix_path)), ("PROTON_VERB", "run")])


def effective_prefix_path(prefix_root: Path, runtime: RuntimeCandidate) -> Path:
    """Proton keeps the Wine prefix in <root>/pfx; plain Wine uses the root."""
    return prefix_root / "pfx" if runtime.is_proton else prefix_root


def steam_client_install_path(proton: str) -> Optional[str]:
    """Steam root above the proton script: the parent of the nearest 'steamapps' ancestor."""
    for ancestor in Path(proton).parents:
        if ancestor.name.lower() == "steamapps":
            return str(ancestor.parent)
    return None


def proton_root(proton: str) -> str:
    return str(Path(proton).parent)


def proton_bin_dir(proton: str) -> Optional[Path]:
    root = Path(proton).parent
    for dist in ("files", "dist"):
        candidate = root / dist / "bin"
        if candidate.is_dir():
            return candidate
    return None


def apply_proton_wine_binaries(env: EnvPairs, proton: str, host: HostEnvironment) -> None:
    """Expose Proton's bundled wine binaries through PATH and WINE* variables."""
    bin_dir = proton_bin_dir(proton)
    if bin_dir is None:
        return
    env.prepend_path(bin_dir, fallback=host.get("PATH") or "")
    for name, filename in (("WINE", "wine"), ("WINE64", "wine64"), ("WINESERVER", "wineserver")):
        candidate = bin_dir / filename
        if candidate.is_file():
            env.set(name, str(candidate))


def apply_proton_feature_envs(env: EnvPairs, config: GameConfig) -> None:
    """Proton toggles; ESYNC/FSYNC are expressed inverted, as opt-outs."""
    if not config.runner.esync:
        env.set("PROTON_NO_ESYNC", "1")
    if not config.runner.fsync:
        env.set("PROTON_NO_FSYNC", "1")

    compat = config.compatibility
    if compat.wine_wayland.is_enabled:
        env.set("PROTON_ENABLE_WAYLAND", "1")
        if compat.hdr.is_enabled:
            env.set("PROTON_ENABLE_HDR", "1")

    if compat.auto_dxvk_nvapi.is_enabled:
        env.set("PROTON_ENABLE_NVAPI", "1")
        env.set("DXVK_NVAPI_ALLOW_OTHER_DRIVERS", "1")
    else:
        env.set("PROTON_DISABLE_NVAPI", "1")


def apply_wine_feature_envs(env: EnvPairs, config: GameConfig) -> None:
    if config.runner.esync:
        env.set("WINEESYNC", "1")
    if config.runner.fsync:
        env.set("WINEFSYNC", "1")

    compat = config.compatibility
    if compat.wine_wayland.is_enabled:
        env.set("DISPLAY", "")
        if compat.hdr.is_enabled:
            env.set("DXVK_HDR", "1")

    if compat.auto_dxvk_nvapi.is_enabled:
        env.set("DXVK_ENABLE_NVAPI", "1")
        env.set("DXVK_NVAPI_ALLOW_OTHER_DRIVERS", "1")


def apply_aux_runtime_envs(env: EnvPairs, config: GameConfig, report: DoctorReport) -> None:
    """Point Proton at the EAC / BattlEye runtimes the doctor found."""
    compat = config.compatibility
    if compat.easy_anti_cheat_runtime.is_enabled:
        path = report.found_path("eac-runtime")
        if path:
            env.set("PROTON_EAC_RUNTIME", path)
    if compat.battleye_runtime.is_enabled:
        path = report.found_path("battleye-runtime")
        if path:
            env.set("PROTON_BATTLEYE_RUNTIME", path)


def apply_runtime_defaults(
    env: EnvPairs,
    config: GameConfig,
    report: DoctorReport,
    runtime: RuntimeCandidate,
    host: HostEnvironment,
    game_root: Optional[Path] = None,
    set_ld_preload_default: bool = False,
) -> None:
    """
    Layer the Steam/Heroic-style defaults for the selected runtime.

    Args:
        env: Environment being composed, modified in place
        config: Game configuration
        report: Doctor report, used for the proton path and aux runtimes
        runtime: Selected runtime candidate
        host: Host environment, for pass-through Steam IDs and HOME
        game_root: Game install dir, exported as STEAM_COMPAT_INSTALL_PATH
        set_ld_preload_default: Clear LD_PRELOAD unless the host sets it
    """
    proton = report.runtime.proton
    if runtime.is_proton:
        if game_root is not None:
            env.set("STEAM_COMPAT_INSTALL_PATH", str(game_root))
        if proton:
            client_path = steam_client_install_path(proton)
            if client_path:
                env.set("STEAM_COMPAT_CLIENT_INSTALL_PATH", client_path)
            if runtime is RuntimeCandidate.PROTON_UMU:
                env.set("PROTONPATH", proton_root(proton))

        app_id = host.get("STEAM_COMPAT_APP_ID") or "0"
        game_id_suffix = config.exe_hash.strip() or "0"
        env.set("STEAM_COMPAT_APP_ID", app_id)
        env.set("SteamAppId", host.get("SteamAppId") or app_id)
        env.set("SteamGameId", host.get("SteamGameId") or f"heroic-{game_id_suffix}")
        if host.home is not None:
            env.set("PROTON_LOG_DIR", str(host.home))

        apply_proton_feature_envs(env, config)
        apply_aux_runtime_envs(env, config, report)
    else:
        apply_wine_feature_envs(env, config)

    if runtime is RuntimeCandidate.PROTON_UMU:
        env.set("GAMEID", host.get("GAMEID") or "umu-0")
        update = host.get("UMU_RUNTIME_UPDATE")
        if update is None:
            update = "1" if config.runner.auto_update else "0"
        env.set("UMU_RUNTIME_UPDATE", update)

    if set_ld_preload_default and host.get("LD_PRELOAD") is None and "LD_PRELOAD" not in env:
        env.set("LD_PRELOAD", "")


def build_prefix_env(
    config: GameConfig,
    report: DoctorReport,
    runtime: RuntimeCandidate,
    prefix_root: Path,
    host: HostEnvironment,
) -> EnvPairs:
    """Environment for prefix bootstrap commands (wineboot, winetricks, regedit)."""
    env = base_env_for_prefix(effective_prefix_path(prefix_root, runtime))
    if runtime.is_proton:
        env.remove("PROTON_VERB")

    # Keep the Gecko/Mono installers from popping up during bootstrap.
    env.set("WINEDLLOVERRIDES", "mscoree,mshtml=d")

    if runtime.is_proton:
        env.set("STEAM_COMPAT_DATA_PATH", str(prefix_root))
        proton = report.runtime.proton
        if proton:
            apply_proton_wine_binaries(env, proton, host)

    apply_runtime_defaults(env, config, report, runtime, host)
    return env

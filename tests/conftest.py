from __future__ import annotations

from pathlib import Path

import pytest

from luthier.config import GameConfig, RuntimeCandidate, RuntimePolicy
from luthier.doctor import CheckStatus, DoctorReport, HostProbe, RuntimeDiscovery
from luthier.host import HostEnvironment

EXE_HASH = "ab12cd34ef56" + "0" * 52


def write_executable(path: Path, body: str = "exit 0") -> Path:
    """Write a small shell script and mark it executable."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(0o755)
    return path


def make_config(**overrides) -> GameConfig:
    data = {
        "game_name": "Test Game",
        "exe_hash": EXE_HASH,
        "relative_exe_path": "bin/game.exe",
        "runner": {"proton_version": "GE-Proton9-20"},
    }
    data.update(overrides)
    return GameConfig.model_validate(data)


def wine_policy() -> dict:
    return RuntimePolicy(primary=RuntimeCandidate.WINE).model_dump(mode="json")


@pytest.fixture
def home(tmp_path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def bin_dir(tmp_path) -> Path:
    path = tmp_path / "bin"
    path.mkdir()
    return path


@pytest.fixture
def host(home, bin_dir) -> HostEnvironment:
    return HostEnvironment.from_mapping({"HOME": str(home), "PATH": str(bin_dir)})


@pytest.fixture
def probe(host) -> HostProbe:
    return HostProbe(host, library_dirs=[], system_wine_paths=[])


@pytest.fixture
def fake_wine(bin_dir) -> Path:
    """wine, winecfg and regedit in the fake PATH; every call is recorded."""
    log = bin_dir.parent / "calls.log"
    record = f"printf '%s\\n' \"${{0##*/}} $*\" >> {log}\nexit 0"
    for name in ("wine", "winecfg", "regedit", "wineboot"):
        write_executable(bin_dir / name, record)
    return bin_dir / "wine"


@pytest.fixture
def fake_proton(home) -> Path:
    """A Proton build inside a Steam compatibilitytools.d tree."""
    root = home / ".local/share/Steam/compatibilitytools.d/GE-Proton9-20"
    proton = write_executable(root / "proton")
    for name in ("wine", "wine64", "wineserver"):
        write_executable(root / "files" / "bin" / name)
    return proton


@pytest.fixture
def calls(tmp_path):
    """Read the commands recorded by the fake binaries."""
    log = tmp_path / "calls.log"

    def read() -> list[str]:
        if not log.exists():
            return []
        return log.read_text().splitlines()

    return read


@pytest.fixture
def game_root(tmp_path) -> Path:
    root = tmp_path / "game"
    (root / "bin").mkdir(parents=True)
    (root / "bin" / "game.exe").write_bytes(b"MZ")
    return root


@pytest.fixture(autouse=True)
def _no_dry_run_env(monkeypatch):
    monkeypatch.delenv("LUTHIER_DRY_RUN", raising=False)
    monkeypatch.delenv("LUTHIER_FORCE_GAMEMODE_UMU", raising=False)


def make_report(runtime: RuntimeCandidate, proton=None, wine=None, umu_run=None, dependencies=None) -> DoctorReport:
    """A doctor report with a fixed runtime selection, no host probing."""
    return DoctorReport(
        generated_at="2024-01-01T00:00:00.000+00:00",
        has_embedded_config=True,
        runtime=RuntimeDiscovery(
            proton=proton,
            wine=wine,
            umu_run=umu_run,
            selected_runtime=runtime,
            runtime_status=CheckStatus.OK,
        ),
        dependencies=list(dependencies or []),
        summary=CheckStatus.OK,
    )

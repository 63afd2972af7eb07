from pathlib import Path

import pytest

from luthier.config import FeatureState, RuntimeCandidate
from luthier.doctor import (
    CheckStatus,
    Doctor,
    HostProbe,
    evaluate_component,
    evaluate_gamemode_under_umu,
    evaluate_gamemoderun,
    worst_status,
)
from luthier.host import HostEnvironment

from conftest import make_config, write_executable


@pytest.mark.parametrize("state, found, status", [
    (FeatureState.MANDATORY_ON, True, CheckStatus.OK),
    (FeatureState.MANDATORY_ON, False, CheckStatus.BLOCKER),
    (FeatureState.MANDATORY_OFF, True, CheckStatus.INFO),
    (FeatureState.MANDATORY_OFF, False, CheckStatus.INFO),
    (FeatureState.OPTIONAL_ON, True, CheckStatus.OK),
    (FeatureState.OPTIONAL_ON, False, CheckStatus.WARN),
    (FeatureState.OPTIONAL_OFF, True, CheckStatus.INFO),
    (FeatureState.OPTIONAL_OFF, False, CheckStatus.INFO),
    (None, True, CheckStatus.OK),
    (None, False, CheckStatus.WARN),
])
def test_component_status_matrix(state, found, status):
    resolved = Path("/usr/bin/tool") if found else None
    result = evaluate_component("tool", state, resolved)
    assert result.status is status
    assert result.found is found


def test_worst_status():
    assert worst_status([]) is CheckStatus.INFO
    assert worst_status([CheckStatus.OK, CheckStatus.INFO]) is CheckStatus.OK
    assert worst_status([CheckStatus.WARN, CheckStatus.BLOCKER, CheckStatus.OK]) is CheckStatus.BLOCKER


def test_gamemoderun_without_library_is_missing():
    result = evaluate_gamemoderun(FeatureState.MANDATORY_ON, Path("/usr/bin/gamemoderun"), None)
    assert result.status is CheckStatus.BLOCKER
    assert not result.found
    assert result.resolved_path == "/usr/bin/gamemoderun"
    assert "libgamemode is missing" in result.note


def test_gamemode_under_umu_never_better_than_warn_when_mandatory():
    binary, lib, umu = Path("/g"), Path("/l"), Path("/u")
    mandatory = evaluate_gamemode_under_umu(FeatureState.MANDATORY_ON, binary, lib, umu, forced=False)
    assert mandatory.status is CheckStatus.WARN
    optional = evaluate_gamemode_under_umu(FeatureState.OPTIONAL_ON, binary, lib, umu, forced=False)
    assert optional.status is CheckStatus.INFO
    assert "auto-skip" in optional.note
    missing = evaluate_gamemode_under_umu(FeatureState.MANDATORY_ON, None, lib, umu, forced=False)
    assert missing.status is CheckStatus.BLOCKER


def test_falls_back_to_wine(host, probe, fake_wine):
    config = make_config(requirements={"runtime": {"primary": "ProtonNative", "fallback_order": ["Wine"]}})
    report = Doctor(host, probe).run(config)

    assert report.runtime.selected_runtime is RuntimeCandidate.WINE
    assert report.runtime.runtime_status is CheckStatus.OK
    assert report.runtime.wine == str(fake_wine)
    assert report.runtime.proton is None
    assert not report.is_blocked


def test_strict_without_primary_blocks(host, probe, fake_wine):
    config = make_config(requirements={
        "runtime": {"strict": True, "primary": "ProtonNative", "fallback_order": ["Wine"]},
    })
    report = Doctor(host, probe).run(config)
    assert report.runtime.selected_runtime is None
    assert report.runtime.runtime_status is CheckStatus.BLOCKER
    assert report.is_blocked


def test_requested_proton_version_found(host, probe, fake_proton):
    config = make_config(requirements={"runtime": {"primary": "ProtonNative"}})
    report = Doctor(host, probe).run(config)
    assert report.runtime.selected_runtime is RuntimeCandidate.PROTON_NATIVE
    assert report.runtime.proton == str(fake_proton)
    assert "GE-Proton9-20" in report.runtime.runtime_note
    assert report.runtime.runtime_status is CheckStatus.OK


def test_strict_mismatched_proton_version_blocks(host, probe, fake_proton):
    config = make_config(
        runner={"proton_version": "Proton-Experimental"},
        requirements={"runtime": {"strict": True, "primary": "ProtonNative"}},
    )
    report = Doctor(host, probe).run(config)
    assert report.runtime.runtime_status is CheckStatus.BLOCKER
    assert "not found" in report.runtime.runtime_note


def test_mandatory_dependency_missing_blocks(host, probe, fake_wine):
    config = make_config(requirements={
        "runtime": {"primary": "Wine"},
        "gamescope": "MandatoryOn",
    })
    report = Doctor(host, probe).run(config)
    assert report.dependency("gamescope").status is CheckStatus.BLOCKER
    assert report.is_blocked


def test_extra_system_dependency(host, probe, fake_wine, bin_dir):
    write_executable(bin_dir / "obs-gamecapture")
    config = make_config(
        requirements={"runtime": {"primary": "Wine"}},
        extra_system_dependencies=[
            {"name": "obs", "state": "MandatoryOn", "check_commands": ["obs-gamecapture"]},
            {"name": "missing", "state": "OptionalOn", "check_paths": ["/nonexistent/luthier"]},
        ],
    )
    report = Doctor(host, probe).run(config)
    assert report.found_path("obs") == str(bin_dir / "obs-gamecapture")
    assert report.dependency("missing").status is CheckStatus.WARN
    assert report.found_path("missing") is None


def test_without_config_auto_selects(host, probe, fake_wine):
    report = Doctor(host, probe).run(None)
    assert not report.has_embedded_config
    assert report.runtime.selected_runtime is RuntimeCandidate.WINE
    assert [d.name for d in report.dependencies] == [
        "gamescope", "gamemoderun", "libgamemode", "mangohud", "winetricks", "umu-run",
    ]


def test_without_config_and_nothing_found_warns(host, probe):
    report = Doctor(host, probe).run(None)
    assert report.runtime.selected_runtime is None
    assert report.runtime.runtime_status is CheckStatus.WARN
    assert not report.is_blocked


def test_umu_selected_when_proton_and_umu_present(host, probe, fake_proton, bin_dir):
    write_executable(bin_dir / "umu-run")
    report = Doctor(host, probe).run(make_config())
    assert report.runtime.selected_runtime is RuntimeCandidate.PROTON_UMU
    assert report.dependency("gamemode-umu-runtime") is not None


def test_proton_from_env_path(home, tmp_path):
    proton = write_executable(tmp_path / "custom" / "proton")
    host = HostEnvironment.from_mapping({"HOME": str(home), "PATH": "", "PROTONPATH": str(proton.parent)})
    probe = HostProbe(host, library_dirs=[], system_wine_paths=[])
    assert probe.discover_latest_proton() == proton

import os

import pytest

from luthier.config import RuntimeCandidate
from luthier.host import HostEnvironment
from luthier.lock import InstanceLock
from luthier.overrides import RuntimeOverrides, save_overrides
from luthier.pipeline import PlayOutcome, check_integrity, play, run_winecfg
from luthier.process import SkipReason, StepStatus

from conftest import EXE_HASH, make_config, wine_policy, write_executable


@pytest.fixture
def wine_config():
    return make_config(requirements={"runtime": wine_policy()})


@pytest.fixture
def on_path(monkeypatch, bin_dir):
    monkeypatch.setenv("PATH", f"{bin_dir}:{os.environ.get('PATH', '')}")


def test_check_integrity(game_root):
    config = make_config(integrity_files=["bin/game.exe", "data/pak0.pak"])
    assert check_integrity(config, game_root) == ["data/pak0.pak"]


def test_dry_run_plays_nothing(host, probe, fake_wine, game_root, wine_config, calls):
    outcome = play(wine_config, game_root, host=host, overrides=RuntimeOverrides(), dry_run=True, probe=probe)

    assert not outcome.aborted
    assert outcome.ok
    assert outcome.status == "skipped"
    assert outcome.report.runtime.selected_runtime is RuntimeCandidate.WINE
    assert [r.name for r in outcome.prefix_results] == ["wineboot-init"]
    assert all(r.skip_reason is SkipReason.DRY_RUN for r in outcome.prefix_results)
    assert outcome.winecfg.skip_reason is SkipReason.DRY_RUN
    assert outcome.launch_plan.argv == [str(fake_wine), str(game_root / "bin/game.exe")]
    assert outcome.game.skip_reason is SkipReason.DRY_RUN
    assert not outcome.prefix_context.prefix_root.exists()
    assert [c for c in calls() if not c.startswith("wine --version")] == []


def test_dry_run_from_environment(home, bin_dir, probe, fake_wine, game_root, wine_config):
    host = HostEnvironment.from_mapping({"HOME": str(home), "PATH": str(bin_dir), "LUTHIER_DRY_RUN": "true"})
    outcome = play(wine_config, game_root, host=host, overrides=RuntimeOverrides(), probe=probe)
    assert outcome.game.status is StepStatus.SKIPPED


def test_full_run(host, probe, fake_wine, game_root, calls, on_path):
    config = make_config(
        requirements={"runtime": wine_policy()},
        launch_args=["-nolauncher"],
        scripts={"pre_launch": "echo ready > pre.txt"},
    )
    outcome = play(config, game_root, host=host, overrides=RuntimeOverrides(), dry_run=False, probe=probe)

    assert outcome.abort_reason is None
    assert outcome.status == "completed"
    assert outcome.pre_launch.status is StepStatus.SUCCESS
    assert (game_root / "pre.txt").read_text() == "ready\n"
    assert outcome.post_launch is None

    launched = [c for c in calls() if not c.startswith("wine --version")]
    assert [c.split()[0] for c in launched] == ["wineboot", "regedit", "wine"]
    assert launched[-1] == f"wine {game_root / 'bin/game.exe'} -nolauncher"

    again = play(config, game_root, host=host, overrides=RuntimeOverrides(), dry_run=False, probe=probe)
    assert again.ok
    assert again.prefix_results == []
    assert again.winecfg.skip_reason is SkipReason.CACHED
    assert not InstanceLock.for_game(host, EXE_HASH).path.exists()


def test_missing_executable_aborts(host, probe, fake_wine, tmp_path, wine_config):
    empty = tmp_path / "empty"
    empty.mkdir()
    outcome = play(wine_config, empty, host=host, overrides=RuntimeOverrides(), dry_run=True, probe=probe)

    assert outcome.aborted
    assert outcome.status == "aborted"
    assert outcome.missing_files == ["bin/game.exe"]
    assert outcome.abort_reason.startswith("BLOCKER: required game files are missing")
    assert outcome.report is None


def test_no_runtime_aborts(host, probe, game_root, wine_config):
    outcome = play(wine_config, game_root, host=host, overrides=RuntimeOverrides(), dry_run=True, probe=probe)
    assert outcome.abort_reason == "doctor returned BLOCKER"
    assert outcome.report is not None
    assert outcome.game is None


def test_failed_wineboot_aborts(host, probe, fake_wine, bin_dir, game_root, wine_config, on_path):
    write_executable(bin_dir / "wineboot", "exit 1")
    outcome = play(wine_config, game_root, host=host, overrides=RuntimeOverrides(), dry_run=False, probe=probe)

    assert outcome.abort_reason == "mandatory prefix setup command failed"
    assert outcome.prefix_results[0].status is StepStatus.FAILED
    assert outcome.launch_plan is None


def test_failed_pre_launch_script_aborts(host, probe, fake_wine, game_root, on_path):
    config = make_config(requirements={"runtime": wine_policy()}, scripts={"pre_launch": "exit 4"})
    outcome = play(config, game_root, host=host, overrides=RuntimeOverrides(), dry_run=False, probe=probe)
    assert outcome.abort_reason == "pre-launch script failed"
    assert outcome.game is None


def test_second_instance_aborts(host, probe, fake_wine, game_root, wine_config):
    with InstanceLock.for_game(host, EXE_HASH):
        outcome = play(wine_config, game_root, host=host, overrides=RuntimeOverrides(), dry_run=True, probe=probe)
    assert "already running" in outcome.abort_reason


def test_stored_overrides_are_applied(host, probe, fake_wine, game_root):
    config = make_config(requirements={"runtime": wine_policy()}, dependencies=["vcrun2019"])
    save_overrides(host, EXE_HASH, RuntimeOverrides(winetricks=True))

    outcome = play(config, game_root, host=host, dry_run=True, probe=probe)
    assert [r.name for r in outcome.prefix_results] == ["wineboot-init", "winetricks"]


def test_bad_mount_aborts(host, probe, fake_wine, game_root):
    config = make_config(
        requirements={"runtime": wine_policy()},
        folder_mounts=[{"source_relative_path": "saves", "target_windows_path": "C:\\Game"}],
    )
    outcome = play(config, game_root, host=host, overrides=RuntimeOverrides(), dry_run=True, probe=probe)
    assert outcome.abort_reason.startswith("folder mount setup failed")


def test_run_winecfg_dry_run(host, probe, fake_wine, bin_dir, game_root, wine_config):
    outcome = run_winecfg(wine_config, game_root, host=host, dry_run=True, probe=probe)
    assert not outcome.aborted
    assert outcome.launch_plan.argv == [str(bin_dir / "winecfg")]
    assert outcome.game.name == "winecfg"
    assert outcome.game.status is StepStatus.SKIPPED


def test_outcome_status_pending():
    assert PlayOutcome().status == "pending"
    assert not PlayOutcome().ok


def test_run_winecfg(host, probe, fake_wine, game_root, wine_config, calls, on_path):
    outcome = run_winecfg(wine_config, game_root, host=host, dry_run=False, probe=probe)

    assert outcome.abort_reason is None
    assert outcome.game.status is StepStatus.SUCCESS
    launched = [c for c in calls() if not c.startswith("wine --version")]
    assert [c.split()[0] for c in launched] == ["wineboot", "regedit", "winecfg"]
    assert not InstanceLock.for_game(host, EXE_HASH).path.exists()


def test_run_winecfg_blocked_by_doctor(host, probe, game_root, wine_config):
    outcome = run_winecfg(wine_config, game_root, host=host, dry_run=True, probe=probe)
    assert outcome.abort_reason == "doctor returned BLOCKER"
    assert outcome.launch_plan is None
    assert outcome.game is None


def test_run_winecfg_second_instance_aborts(host, probe, fake_wine, game_root, wine_config, calls, on_path):
    with InstanceLock.for_game(host, EXE_HASH):
        outcome = run_winecfg(wine_config, game_root, host=host, dry_run=False, probe=probe)

    assert "already running" in outcome.abort_reason
    assert outcome.report is None
    assert outcome.game is None
    assert calls() == []

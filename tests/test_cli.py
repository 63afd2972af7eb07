import json

import pytest
from click.testing import CliRunner

from luthier.cli import cli
from luthier.host import HostEnvironment
from luthier.injector import append_config, extract_config_from_file
from luthier.overrides import load_overrides

from conftest import EXE_HASH, make_config, wine_policy


@pytest.fixture
def runner(home, bin_dir):
    return CliRunner(env={"HOME": str(home), "PATH": str(bin_dir), "LUTHIER_DRY_RUN": None})


@pytest.fixture
def config_file(tmp_path, game_root):
    path = game_root / "game.json"
    make_config(requirements={"runtime": wine_policy(), "mangohud": "OptionalOff"}).save(path)
    return path


def test_validate_ok(runner, config_file):
    result = runner.invoke(cli, ["--config", str(config_file), "validate"])
    assert result.exit_code == 0, result.output
    assert "no problems found" in result.output


def test_validate_reports_issues(runner, tmp_path):
    path = tmp_path / "bad.json"
    make_config(relative_exe_path="../../etc/passwd").save(path)
    result = runner.invoke(cli, ["--config", str(path), "validate"])
    assert result.exit_code == 1
    assert "PathTraversalNotAllowed" in result.output


def test_broken_config_file(runner, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{")
    result = runner.invoke(cli, ["--config", str(path), "validate"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_inject_then_extract(runner, tmp_path, config_file):
    base = tmp_path / "base"
    base.write_bytes(b"\x7fELF-base")
    out = tmp_path / "launch"

    result = runner.invoke(cli, ["inject", str(base), str(config_file), "-o", str(out)])
    assert result.exit_code == 0, result.output
    assert "Launcher written to" in result.output
    assert extract_config_from_file(out) == config_file.read_bytes()

    extracted = tmp_path / "extracted.json"
    result = runner.invoke(cli, ["extract", str(out), "-o", str(extracted)])
    assert result.exit_code == 0, result.output
    assert extracted.read_bytes() == config_file.read_bytes()

    result = runner.invoke(cli, ["extract", str(out)])
    assert json.loads(result.output)["exe_hash"] == EXE_HASH


def test_inject_rejects_invalid_config(runner, tmp_path):
    base = tmp_path / "base"
    base.write_bytes(b"base")
    config = tmp_path / "bad.json"
    config.write_text('{"game_name": "x"}')
    result = runner.invoke(cli, ["inject", str(base), str(config), "-o", str(tmp_path / "out")])
    assert result.exit_code == 1
    assert "refusing to embed invalid config" in result.output


def test_extract_without_trailer(runner, tmp_path):
    plain = tmp_path / "plain"
    plain.write_bytes(b"x" * 100)
    result = runner.invoke(cli, ["extract", str(plain)])
    assert result.exit_code == 1
    assert "trailer magic not found" in result.output


def test_binary_option_loads_embedded_config(runner, tmp_path, game_root):
    binary = game_root / "launch"
    binary.write_bytes(append_config(b"base", make_config().model_dump_json().encode()))
    result = runner.invoke(cli, ["--binary", str(binary), "show-config"])
    assert result.exit_code == 0, result.output
    assert "Test Game" in result.output
    assert "mangohud" in result.output


def test_show_config_json(runner, config_file):
    result = runner.invoke(cli, ["--config", str(config_file), "show-config", "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["game_name"] == "Test Game"


def test_set_saves_overrides(runner, config_file, home):
    result = runner.invoke(cli, ["--config", str(config_file), "set", "--mangohud", "on", "--wine-wayland", "off"])
    assert result.exit_code == 0, result.output
    assert "Overrides saved to" in result.output

    host = HostEnvironment.from_mapping({"HOME": str(home)})
    overrides = load_overrides(host, EXE_HASH)
    assert overrides.mangohud is True
    assert overrides.wine_wayland is False

    again = runner.invoke(cli, ["--config", str(config_file), "set", "--mangohud", "on"])
    assert "No changes." in again.output


def test_set_rejects_mandatory_feature(runner, tmp_path):
    path = tmp_path / "game.json"
    make_config(requirements={"gamemode": "MandatoryOn"}).save(path)
    result = runner.invoke(cli, ["--config", str(path), "set", "--gamemode", "off"])
    assert result.exit_code == 1
    assert "not overridable" in result.output


def test_doctor_without_config(runner, fake_wine):
    result = runner.invoke(cli, ["doctor"])
    assert result.exit_code == 0, result.output
    assert "Wine" in result.output


def test_doctor_blocked(runner, tmp_path, fake_wine):
    path = tmp_path / "game.json"
    make_config(requirements={"runtime": wine_policy(), "gamescope": "MandatoryOn"}).save(path)
    result = runner.invoke(cli, ["--config", str(path), "doctor"])
    assert result.exit_code == 1
    assert "BLOCKER" in result.output


def test_play_dry_run(runner, config_file, fake_wine):
    result = runner.invoke(cli, ["--config", str(config_file), "play", "--dry-run"])
    assert "Command:" in result.output
    assert "Launch: skipped" in result.output

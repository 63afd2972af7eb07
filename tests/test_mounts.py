import pytest

from luthier.mounts import MountError, MountStatus, apply_folder_mounts, windows_target_to_host

from conftest import make_config


def mount(source, target, create=False):
    return {"source_relative_path": source, "target_windows_path": target, "create_source_if_missing": create}


def test_windows_target_to_host(tmp_path):
    assert windows_target_to_host(tmp_path, "C:\\users\\steamuser\\Saved Games") == (
        tmp_path / "drive_c/users/steamuser/Saved Games"
    )
    assert windows_target_to_host(tmp_path, "D:\\data") == tmp_path / "dosdevices/d:/data"


def test_mounts_are_symlinked(tmp_path, game_root):
    (game_root / "saves").mkdir()
    prefix = tmp_path / "prefix"
    config = make_config(folder_mounts=[mount("saves", "C:/users/steamuser/Documents/Game")])

    results = apply_folder_mounts(config, game_root, prefix, dry_run=False)
    target = prefix / "drive_c/users/steamuser/Documents/Game"
    assert [r.status for r in results] == [MountStatus.MOUNTED]
    assert results[0].target_windows_path == "C:\\users\\steamuser\\Documents\\Game"
    assert target.is_symlink()
    assert target.resolve() == (game_root / "saves").resolve()

    again = apply_folder_mounts(config, game_root, prefix, dry_run=False)
    assert [r.status for r in again] == [MountStatus.UNCHANGED]


def test_existing_directory_is_replaced(tmp_path, game_root):
    (game_root / "saves").mkdir()
    prefix = tmp_path / "prefix"
    target = prefix / "drive_c/Game"
    target.mkdir(parents=True)
    (target / "old.sav").write_text("x")

    apply_folder_mounts(make_config(folder_mounts=[mount("saves", "C:\\Game")]), game_root, prefix, dry_run=False)
    assert target.is_symlink()


def test_dry_run_only_plans(tmp_path, game_root):
    prefix = tmp_path / "prefix"
    config = make_config(folder_mounts=[mount("new-saves", "C:\\Game", create=True)])
    results = apply_folder_mounts(config, game_root, prefix, dry_run=True)
    assert [r.status for r in results] == [MountStatus.PLANNED]
    assert not (game_root / "new-saves").exists()
    assert not prefix.exists()


def test_missing_source_is_created_on_request(tmp_path, game_root):
    config = make_config(folder_mounts=[mount("new-saves", "C:\\Game", create=True)])
    apply_folder_mounts(config, game_root, tmp_path / "prefix", dry_run=False)
    assert (game_root / "new-saves").is_dir()


def test_missing_source_fails(tmp_path, game_root):
    config = make_config(folder_mounts=[mount("nope", "C:\\Game")])
    with pytest.raises(MountError, match="does not exist"):
        apply_folder_mounts(config, game_root, tmp_path / "prefix", dry_run=False)


def test_source_must_be_directory(tmp_path, game_root):
    config = make_config(folder_mounts=[mount("bin/game.exe", "C:\\Game")])
    with pytest.raises(MountError, match="not a directory"):
        apply_folder_mounts(config, game_root, tmp_path / "prefix", dry_run=False)


def test_symlinked_source_cannot_escape(tmp_path, game_root):
    outside = tmp_path / "outside"
    outside.mkdir()
    (game_root / "escape").symlink_to(outside)
    config = make_config(folder_mounts=[mount("escape", "C:\\Game")])
    with pytest.raises(MountError, match="escapes game root"):
        apply_folder_mounts(config, game_root, tmp_path / "prefix", dry_run=False)


def test_duplicate_targets_rejected(tmp_path, game_root):
    (game_root / "a").mkdir()
    (game_root / "b").mkdir()
    config = make_config(folder_mounts=[
        mount("a", r"C:\Users\Steamuser\Documents\Game"),
        mount("b", "c:/users/steamuser/documents/game"),
    ])
    with pytest.raises(MountError, match="duplicate folder mount target"):
        apply_folder_mounts(config, game_root, tmp_path / "prefix", dry_run=True)

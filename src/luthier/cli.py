"""
Command-line interface for luthier.

Usage:
    luthier --config game.json doctor
    luthier --config game.json --game-root /games/MyGame play --dry-run
    luthier --binary /games/MyGame/launch show-config
    luthier --binary /games/MyGame/launch set --mangohud on --gamescope default
    luthier inject luthier-base game.json -o /games/MyGame/launch
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from luthier import __version__
from luthier.config import ConfigError, GameConfig
from luthier.doctor import CheckStatus, DoctorReport, run_doctor
from luthier.host import HostEnvironment, HostError
from luthier.injector import InjectError, InjectOptions, extract_config_from_file, inject_from_files
from luthier.log import setup_logging
from luthier.overrides import (
    FEATURE_FIELDS,
    OptionalToggle,
    OverrideError,
    apply_toggle,
    feature_views,
    load_overrides,
    save_overrides,
)
from luthier.pipeline import PlayOutcome, play as run_play, run_winecfg
from luthier.process import CommandResult
from luthier.validation import validate as validate_config


console = Console()

STATUS_STYLES = {
    CheckStatus.OK: "green",
    CheckStatus.INFO: "blue",
    CheckStatus.WARN: "yellow",
    CheckStatus.BLOCKER: "bold red",
}


@dataclass
class CliContext:
    host: HostEnvironment
    config_path: Optional[Path]
    binary_path: Optional[Path]
    game_root: Optional[Path]

    def load(self) -> tuple[GameConfig, Path]:
        """Config and game root from --config, --binary, or the running executable."""
        if self.config_path is not None:
            config = GameConfig.load(self.config_path)
            return config, self.game_root or self.config_path.resolve().parent

        binary = self.binary_path or Path(sys.argv[0]).resolve()
        raw = extract_config_from_file(binary)
        return GameConfig.from_json_bytes(raw), self.game_root or binary.parent

    def try_load(self) -> Optional[GameConfig]:
        if self.config_path is None and self.binary_path is None:
            return None
        return self.load()[0]


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


@click.group()
@click.version_option(__version__)
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Game config JSON file")
@click.option("--binary", "binary_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Launcher binary with an embedded config")
@click.option("--game-root", type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Game directory (default: directory of the config or binary)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path, binary_path, game_root, verbose: bool):
    """Luthier - run Windows games through Wine, Proton or UMU."""
    host = HostEnvironment.from_os()
    try:
        log_dir = host.luthier_data_dir() / "logs"
    except HostError:
        log_dir = None
    setup_logging(verbose, log_dir)
    ctx.obj = CliContext(host=host, config_path=config_path, binary_path=binary_path, game_root=game_root)


@cli.command()
@click.pass_obj
def doctor(obj: CliContext):
    """Check host dependencies and pick a runtime."""
    try:
        config = obj.try_load()
    except (ConfigError, InjectError) as e:
        _fail(str(e))

    with console.status("Probing host..."):
        report = run_doctor(config, obj.host)

    _print_report(report)
    if report.is_blocked:
        sys.exit(1)


@cli.command()
@click.option("--dry-run", is_flag=True, default=False, help="Plan everything, spawn nothing")
@click.pass_obj
def play(obj: CliContext, dry_run: bool):
    """Prepare the prefix and launch the game."""
    try:
        config, game_root = obj.load()
    except (ConfigError, InjectError) as e:
        _fail(str(e))

    outcome = run_play(config, game_root, host=obj.host, dry_run=dry_run or None)
    _print_outcome(outcome)
    if not outcome.ok:
        sys.exit(1)


@cli.command()
@click.option("--dry-run", is_flag=True, default=False, help="Plan everything, spawn nothing")
@click.pass_obj
def winecfg(obj: CliContext, dry_run: bool):
    """Prepare the prefix and open winecfg."""
    try:
        config, game_root = obj.load()
    except (ConfigError, InjectError) as e:
        _fail(str(e))

    outcome = run_winecfg(config, game_root, host=obj.host, dry_run=dry_run or None)
    _print_outcome(outcome)
    if not outcome.ok:
        sys.exit(1)


@cli.command()
@click.pass_obj
def validate(obj: CliContext):
    """Check a config for problems."""
    try:
        config, _ = obj.load()
    except (ConfigError, InjectError) as e:
        _fail(str(e))

    issues = validate_config(config)
    if not issues:
        console.print(f"[green]✓[/green] {config.game_name}: no problems found")
        return

    table = Table(title=f"{len(issues)} problem(s)")
    table.add_column("Code", style="bold", no_wrap=True)
    table.add_column("Field")
    table.add_column("Message")
    for issue in issues:
        table.add_row(issue.code, issue.field, issue.message)
    console.print(table)
    sys.exit(1)


@cli.command("show-config")
@click.option("--json", "as_json", is_flag=True, help="Print the raw config document")
@click.pass_obj
def show_config(obj: CliContext, as_json: bool):
    """Show the config and the effective feature toggles."""
    try:
        config, game_root = obj.load()
        overrides = load_overrides(obj.host, config.exe_hash)
    except (ConfigError, InjectError, OverrideError, HostError) as e:
        _fail(str(e))

    if as_json:
        click.echo(config.model_dump_json(indent=2))
        return

    console.print()
    console.print(f"[bold]Game:[/bold] {config.game_name}")
    console.print(f"[bold]Executable:[/bold] {config.relative_exe_path}")
    console.print(f"[bold]Game root:[/bold] {game_root}")
    console.print(f"[bold]Primary runtime:[/bold] {config.requirements.runtime.primary.value}")
    console.print()
    _print_features(config, overrides)


@cli.command()
@click.argument("base", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output", required=True, type=click.Path(dir_okay=False, path_type=Path),
              help="Launcher binary to write")
@click.option("--backup/--no-backup", default=True, help="Copy an existing output to <output>.bak first")
@click.option("--executable/--no-executable", default=True, help="Set the executable bits on the output")
def inject(base: Path, config_file: Path, output: Path, backup: bool, executable: bool):
    """Embed a config into a copy of a base launcher binary."""
    options = InjectOptions(backup_existing=backup, make_executable=executable)
    try:
        result = inject_from_files(base, config_file, output, options)
    except InjectError as e:
        _fail(str(e))

    console.print(f"[green]✓[/green] Launcher written to: {result.output_path}")
    console.print(f"  Config: {result.config_len} bytes, sha256 {result.config_sha256}")


@cli.command()
@click.argument("binary", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path),
              help="Write the config here instead of stdout")
def extract(binary: Path, output: Optional[Path]):
    """Print or save the config embedded in a launcher binary."""
    try:
        raw = extract_config_from_file(binary)
    except InjectError as e:
        _fail(str(e))

    if output is None:
        click.echo(raw.decode("utf-8", errors="replace"))
        return
    output.write_bytes(raw)
    console.print(f"[green]✓[/green] Config saved to: {output}")


def _toggle_options(func):
    for feature in reversed(list(FEATURE_FIELDS)):
        flag = "--" + feature.replace("_", "-")
        func = click.option(flag, feature, type=click.Choice([t.value for t in OptionalToggle]),
                            help=f"Override {feature} (Optional features only)")(func)
    return func


@cli.command("set")
@_toggle_options
@click.pass_obj
def set_overrides(obj: CliContext, **toggles: Optional[str]):
    """Override Optional features for this game."""
    try:
        config, _ = obj.load()
        overrides = load_overrides(obj.host, config.exe_hash)
        changed = False
        for feature, raw in toggles.items():
            requested = OptionalToggle(raw) if raw else None
            changed |= apply_toggle(config, overrides, feature, requested)
        if changed:
            path = save_overrides(obj.host, config.exe_hash, overrides)
            console.print(f"[green]✓[/green] Overrides saved to: {path}")
        else:
            console.print("No changes.")
    except (ConfigError, InjectError, OverrideError, HostError) as e:
        _fail(str(e))

    _print_features(config, overrides)


def _print_report(report: DoctorReport) -> None:
    runtime = report.runtime
    info = Table(show_header=False, box=None)
    info.add_column("Property", style="bold")
    info.add_column("Value")
    info.add_row("Proton", runtime.proton or "-")
    info.add_row("Wine", runtime.wine or "-")
    info.add_row("umu-run", runtime.umu_run or "-")
    info.add_row("Selected", runtime.selected_runtime.value if runtime.selected_runtime else "none")
    info.add_row("Runtime", f"[{STATUS_STYLES[runtime.runtime_status]}]{runtime.runtime_status.value}[/] "
                            f"{runtime.runtime_note}")
    console.print(info)
    console.print()

    table = Table()
    table.add_column("Dependency")
    table.add_column("Policy")
    table.add_column("Status")
    table.add_column("Path")
    table.add_column("Note")
    for dep in report.dependencies:
        style = STATUS_STYLES[dep.status]
        table.add_row(
            dep.name,
            dep.state.value if dep.state else "-",
            f"[{style}]{dep.status.value}[/]",
            dep.resolved_path or "",
            dep.note,
        )
    console.print(table)
    console.print(f"[bold]Summary:[/bold] [{STATUS_STYLES[report.summary]}]{report.summary.value}[/]")


def _result_row(table: Table, result: Optional[CommandResult]) -> None:
    if result is None:
        return
    status = result.status.value
    if result.failed:
        status = f"[red]{status}[/red]"
    detail = result.error or (f"exit {result.exit_code}" if result.exit_code is not None else "")
    table.add_row(result.name, status, f"{result.duration_ms} ms", detail)


def _print_outcome(outcome: PlayOutcome) -> None:
    if outcome.report is not None:
        console.print(f"[bold]Doctor:[/bold] [{STATUS_STYLES[outcome.report.summary]}]"
                      f"{outcome.report.summary.value}[/]")
    for issue in outcome.issues:
        console.print(f"  [yellow]⚠[/yellow] {issue.field}: {issue.message}")
    if outcome.missing_files:
        console.print("[bold red]Missing files:[/bold red]")
        for missing in outcome.missing_files:
            console.print(f"  • {missing}")

    table = Table(title="Steps")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Detail")
    for result in outcome.prefix_results:
        _result_row(table, result)
    for result in (outcome.registry, outcome.winecfg, outcome.pre_launch, outcome.game, outcome.post_launch):
        _result_row(table, result)
    if table.row_count:
        console.print(table)

    for mount in outcome.mounts:
        console.print(f"  {mount.status.value}: {mount.target_windows_path} -> {mount.source}")

    if outcome.launch_plan is not None:
        console.print(f"[bold]Command:[/bold] {' '.join(outcome.launch_plan.argv)}")
        for note in outcome.launch_plan.notes:
            console.print(f"  [yellow]⚠[/yellow] {note}")

    if outcome.aborted:
        console.print(f"[red]Aborted:[/red] {outcome.abort_reason}")
    else:
        console.print(f"[bold]Launch:[/bold] {outcome.status}")


def _print_features(config: GameConfig, overrides) -> None:
    table = Table(title="Features")
    table.add_column("Feature", no_wrap=True)
    table.add_column("Policy")
    table.add_column("Overridable")
    table.add_column("Override")
    table.add_column("Effective")
    for view in feature_views(config, overrides):
        override = "default" if view.override_value is None else ("on" if view.override_value else "off")
        table.add_row(
            view.feature,
            view.policy_state.value,
            "✓" if view.overridable else "✗",
            override,
            "[green]on[/green]" if view.effective_enabled else "off",
        )
    console.print(table)


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()

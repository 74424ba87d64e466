"""Typer CLI entrypoint for better-bullets."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer

from apps.cli.format_human import render_collision_report, render_scan_summary
from apps.cli.io import load_outline, write_outline_atomic
from apps.cli.scan import clear_classification, run_scan
from bullets.config.loader import load_engine_config
from bullets.config.models import Settings
from bullets.config.settings_store import (
    REQUIRE_WHITESPACE_KEY,
    STRIP_ENABLED_KEY,
    DictSettingsBackend,
    JsonSettingsBackend,
    SettingsBackend,
    hydrate_settings,
    persist_settings,
)
from bullets.orchestrator.engine import BulletEngine
from bullets.patterns.cheatsheet import cheat_sheet_lines
from bullets.patterns.classifier import classify
from bullets.patterns.collisions import detect_collisions
from bullets.utils.errors import UnknownPatternError

app = typer.Typer(help="Better Bullets CLI", rich_markup_mode=None)
settings_app = typer.Typer(help="Read and change persisted settings.", rich_markup_mode=None)
app.add_typer(settings_app, name="settings")

SettingsOption = Annotated[
    Path | None,
    typer.Option("--settings", dir_okay=False, help="JSON settings file."),
]


@app.callback()
def cli_callback() -> None:
    """CLI root callback to keep subcommands explicit."""


@app.command("classify")
def classify_command(text: str, settings: SettingsOption = None) -> None:
    """Print the bullet type a line of text would get, or `none`."""

    detected = classify(text, _load_settings(settings))
    typer.echo(detected.id if detected else "none")


@app.command("cheatsheet")
def cheatsheet_command(settings: SettingsOption = None) -> None:
    """List every bullet type with its active trigger."""

    for line in cheat_sheet_lines(_load_settings(settings)):
        typer.echo(line)


@app.command("collisions")
def collisions_command(
    settings: SettingsOption = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the report as JSON.")] = False,
) -> None:
    """Report duplicate and overlapping triggers among enabled types."""

    report = detect_collisions(_load_settings(settings))
    if as_json:
        typer.echo(json.dumps(report.model_dump(mode="json"), ensure_ascii=False, sort_keys=True))
    else:
        typer.echo(render_collision_report(report))


@app.command("scan")
def scan_command(
    outline: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    settings: SettingsOption = None,
    config: Annotated[Path | None, typer.Option(dir_okay=False)] = None,
    strip: Annotated[
        bool | None,
        typer.Option("--strip/--no-strip", help="Override the persisted strip setting."),
    ] = None,
    write: Annotated[
        bool, typer.Option("--write", help="Write classifications and stripped text back.")
    ] = False,
) -> None:
    """Classify every node of an outline file and render markers."""

    try:
        raw = load_outline(outline)
        engine_config = load_engine_config(config)
        backend = _settings_backend(settings)
        result = asyncio.run(run_scan(raw, backend, engine_config, strip=strip))
    except Exception as exc:  # noqa: BLE001
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        raise typer.Exit(code=1) from exc

    typer.echo(render_scan_summary(result))

    if write:
        try:
            write_outline_atomic(outline, result.outline)
        except Exception as exc:  # noqa: BLE001
            typer.echo(f"ERROR: write outline failed: {exc}")
            raise typer.Exit(code=1) from exc
        typer.echo(f"INFO: wrote outline to {outline}")


@app.command("clear")
def clear_command(
    uid: str,
    outline: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
) -> None:
    """Remove the persisted bullet type of one node."""

    try:
        raw = load_outline(outline)
        updated = asyncio.run(clear_classification(raw, uid))
    except KeyError as exc:
        typer.echo(f"ERROR: unknown uid: {uid}")
        raise typer.Exit(code=1) from exc
    except Exception as exc:  # noqa: BLE001
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        raise typer.Exit(code=1) from exc

    write_outline_atomic(outline, updated)
    typer.echo(f"INFO: cleared bullet type of {uid}")


@settings_app.command("show")
def settings_show_command(settings: SettingsOption = None) -> None:
    """Print effective settings as JSON."""

    typer.echo(
        json.dumps(
            _load_settings(settings).model_dump(mode="json"), ensure_ascii=False, sort_keys=True
        )
    )


@settings_app.command("enable-all")
def settings_enable_all_command(settings: SettingsOption = None) -> None:
    """Enable every bullet type."""

    _offline_engine(settings).enable_all()
    typer.echo("INFO: all bullet types enabled")


@settings_app.command("disable-all")
def settings_disable_all_command(settings: SettingsOption = None) -> None:
    """Disable every bullet type."""

    _offline_engine(settings).disable_all()
    typer.echo("INFO: all bullet types disabled")


@settings_app.command("reset")
def settings_reset_command(settings: SettingsOption = None) -> None:
    """Write every key back with its default value."""

    if settings is None:
        typer.echo("ERROR: --settings is required to persist changes.")
        raise typer.Exit(code=1)
    persist_settings(JsonSettingsBackend(settings), Settings())
    typer.echo("INFO: settings reset to defaults")


@settings_app.command("set")
def settings_set_command(key: str, value: str, settings: SettingsOption = None) -> None:
    """Set one key: stripEnabled, requireTrailingWhitespace, enabled:<id>, override:<id>."""

    engine = _offline_engine(settings)
    try:
        if key == STRIP_ENABLED_KEY:
            engine.set_strip_enabled(_parse_bool(value))
        elif key == REQUIRE_WHITESPACE_KEY:
            engine.set_require_trailing_whitespace(_parse_bool(value))
        elif key.startswith("enabled:"):
            engine.set_enabled(key.partition(":")[2], _parse_bool(value))
        elif key.startswith("override:"):
            engine.set_override(key.partition(":")[2], value)
        else:
            raise ValueError(f"Unsupported settings key: {key}")
    except UnknownPatternError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=2) from exc
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=1) from exc

    typer.echo(f"INFO: {key} updated")


def _settings_backend(path: Path | None) -> SettingsBackend:
    if path is None:
        return DictSettingsBackend()
    return JsonSettingsBackend(path)


def _load_settings(path: Path | None) -> Settings:
    try:
        return hydrate_settings(_settings_backend(path))
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=1) from exc


def _offline_engine(path: Path | None) -> BulletEngine:
    if path is None:
        typer.echo("ERROR: --settings is required to persist changes.")
        raise typer.Exit(code=1)
    try:
        return BulletEngine(None, None, None, settings_backend=JsonSettingsBackend(path))
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=1) from exc


def _parse_bool(value: str) -> bool:
    normalized = value.lower().strip()
    if normalized in {"true", "1", "yes", "on"}:
        return True
    if normalized in {"false", "0", "no", "off"}:
        return False
    raise ValueError(f"Expected a boolean value, got: {value}")


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()

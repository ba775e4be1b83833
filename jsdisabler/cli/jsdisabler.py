#!/usr/bin/env python3
#
# SPDX-License-Identifier: MIT
#
# This file is formatted with Python Black

import click
import logging
import logging.config
import os
import sys
import yaml

from pathlib import Path
from typing import Optional

import jsdisabler
import jsdisabler.emulator
import jsdisabler.recorder
import jsdisabler.sysfs

# mypy doesn't like late initializations
logger: logging.Logger = None  # type: ignore


def _xdg_config_dir() -> Path:
    return Path(os.getenv("XDG_CONFIG_HOME", Path.home() / ".config")) / "jsdisabler"


def _init_logger_config(conf: Optional[Path]) -> None:
    """
    Initialize the logging configuration based on a logger config file
    """
    conf = conf or Path("config-logger.yml")
    if not conf.exists():
        conf = _xdg_config_dir() / "config-logger.yml"
    if Path(conf).exists():
        with open(conf) as fd:
            yml = yaml.safe_load(fd)
        logging.config.dictConfig(yml)
    else:
        _init_logger(verbose=False)


def _init_logger(verbose: bool) -> None:
    """
    Initialize the logging configuration based on a verbosity level
    """
    lvl = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(format="%(levelname)s: %(name)s: %(message)s", level=lvl)


def _load_config(path: Optional[Path]) -> jsdisabler.Config:
    if path is None:
        for candidate in (
            _xdg_config_dir() / "config.yml",
            Path("/etc/jsdisabler/config.yml"),
        ):
            if candidate.exists():
                path = candidate
                break
        else:
            return jsdisabler.Config()

    logger.debug(f"Using config file {path}")
    try:
        return jsdisabler.Config.create_from_file(path)
    except jsdisabler.Config.Error as e:
        click.secho(f"Config error in {path}: {str(e)}. Aborting", fg="red", err=True)
        sys.exit(1)


def _init_registry(ctx) -> jsdisabler.DeviceRegistry:
    replay = ctx.obj.get("replay")
    if replay:
        try:
            return jsdisabler.emulator.YamlRegistry.create_from_file(replay)
        except jsdisabler.emulator.InvalidTreeError as e:
            click.secho(f"Invalid device tree in {replay}: {e}", fg="red", err=True)
            sys.exit(1)

    from jsdisabler.udev import UdevRegistry

    try:
        return UdevRegistry.create()
    except jsdisabler.RegistryUnavailable as e:
        logger.error(f"{e}")
        click.secho("Could not acquire udev context", fg="red", err=True)
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("--verbose", count=True, help="Enable debug logging")
@click.option("--quiet", is_flag=True, help="Disable debug logging")
@click.option(
    "--log-config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to the logger config file",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to the driver configuration file",
)
@click.option(
    "--replay",
    help="Path to a recorded device tree to use instead of udev",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.pass_context
def jsdisabler_cli(
    ctx,
    verbose: int,
    quiet: bool,
    log_config: Path,
    config: Path,
    replay: Path,
):
    """
    Disable the generic HID driver's joysticks while an xpad joystick is
    present, re-enable them otherwise.

    Without a command, this runs the arbitration once.
    """
    global logger

    if quiet:
        _init_logger(verbose=False)
    elif verbose >= 1:
        _init_logger(verbose=True)
    else:
        _init_logger_config(log_config)

    logger = logging.getLogger("jsdisabler")

    ctx.obj = {}
    ctx.obj["config"] = _load_config(config)
    ctx.obj["replay"] = replay

    if ctx.invoked_subcommand is None:
        ctx.invoke(jsdisabler_run)


@jsdisabler_cli.command(name="run")
@click.option(
    "--dry-run", is_flag=True, help="Print the actions but do not write to sysfs"
)
@click.pass_context
def jsdisabler_run(ctx, dry_run: bool = False):
    """
    Check for an xpad joystick and unbind or bind the generic HID driver's
    devices accordingly.
    """
    config = ctx.obj["config"]
    registry = _init_registry(ctx)

    if isinstance(registry, jsdisabler.emulator.YamlRegistry) and not dry_run:
        control = jsdisabler.emulator.YamlDriverControl(registry, config)
    elif dry_run:
        control = jsdisabler.sysfs.DryRunDriverControl(config)
    else:
        control = jsdisabler.sysfs.SysfsDriverControl(config)

    arbitrator = jsdisabler.Arbitrator(
        registry=registry, control=control, config=config
    )
    outcome = arbitrator.run()

    name = config.specialized_driver.capitalize()
    if outcome.specialized_active:
        click.echo(f"{name} device active - deactivate other joystick devices")
    else:
        click.echo(f"No {name} device active - activate all joystick devices")

    for action in outcome.actions:
        click.echo(f"- {action}")


@jsdisabler_cli.command(name="status")
@click.pass_context
def jsdisabler_status(ctx):
    """
    Show whether the specialized driver is active and the driver chain of
    each joystick. The output is YAML-compatible.
    """
    config = ctx.obj["config"]
    registry = _init_registry(ctx)
    arbitrator = jsdisabler.Arbitrator(
        registry=registry,
        control=jsdisabler.sysfs.DryRunDriverControl(config),
        config=config,
    )

    status = {
        "specialized-driver": config.specialized_driver,
        "active": arbitrator.is_specialized_driver_active(),
        "joysticks": [
            {
                "name": js.sysname,
                "ancestors": [
                    {"sysname": p.sysname, "driver": p.driver}
                    for p in jsdisabler.ancestors(registry, js)
                ],
            }
            for js in arbitrator.joystick_devices()
        ],
    }
    click.echo(yaml.safe_dump(status, sort_keys=False, default_flow_style=None))


@jsdisabler_cli.command(name="record")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def jsdisabler_record(ctx, output: Path):
    """
    Record the joystick and HID device tree to a YAML file that can be used
    with --replay.
    """
    registry = _init_registry(ctx)
    recorder = jsdisabler.recorder.YamlTreeRecorder(registry, ctx.obj["config"])
    recorder.write(output)
    click.echo(f"Device tree recorded in {output}")


@jsdisabler_cli.command(name="help")
@click.pass_context
def jsdisabler_help(ctx):
    """
    Print this help output.
    """
    click.echo(jsdisabler_cli.get_help(ctx.parent))


def main():
    jsdisabler_cli()


if __name__ == "__main__":
    main()

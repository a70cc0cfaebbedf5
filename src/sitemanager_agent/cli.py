"""
Installer CLI

Command-line interface for installing and removing the zrok-agent service.
"""

import asyncio
import logging
import sys
from typing import Optional

import click

from .base import BaseInstaller, InstallRequest
from .config import InstallerConfig, load_config
from .errors import InstallerError, StepFailedError, UnsupportedPlatformError
from .linux import LinuxInstaller
from .platform import detect_platform
from .version import __version__
from .windows import WindowsInstaller

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

PROG = "sitemanager-agent"

USAGE = f"""\
Usage:
    sudo {PROG} install <token> "<description>"
    sudo {PROG} uninstall
    {PROG} status
    {PROG} help

    On Windows, run from an elevated (Administrator) prompt instead of sudo.

Commands:
    install     Installs the zrok-agent as a service.
                Requires <token> and <description>.
    uninstall   Uninstalls the zrok-agent service and cleans up.
    status      Shows whether the zrok-agent service is installed.
    help        Shows this help message.

Options:
    --config-file PATH   YAML file overriding the built-in settings.
    --log-level LEVEL    debug, info, warning or error.
    --version            Shows the installer version.

Examples:
    sudo {PROG} install 3G67gmYPhaww "Skyline HQ"
    sudo {PROG} uninstall
"""

PLACEHOLDER_EXAMPLE = f'    sudo {PROG} install 3G67gmYPhaww "Skyline HQ"'


def get_installer_class():
    """Get platform-specific installer class"""
    platform_info = detect_platform()

    if platform_info.platform == "windows":
        return WindowsInstaller
    elif platform_info.platform == "linux":
        return LinuxInstaller
    else:
        raise UnsupportedPlatformError(f"Unsupported platform: {platform_info.platform}")


def _make_installer(config: InstallerConfig) -> BaseInstaller:
    return get_installer_class()(config)


def _apply_log_level(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        logger.warning(f"Unknown log level {level!r}, using INFO")
        numeric = logging.INFO
    logging.getLogger().setLevel(numeric)


def _fail(message: str) -> None:
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)


class HelpByDefaultGroup(click.Group):
    """Routes unknown commands to `help` instead of failing."""

    def resolve_command(self, ctx, args):
        if args and self.get_command(ctx, args[0]) is None:
            return "help", self.get_command(ctx, "help"), args[1:]
        return super().resolve_command(ctx, args)


@click.group(
    cls=HelpByDefaultGroup,
    invoke_without_command=True,
    context_settings={"ignore_unknown_options": True},
)
@click.option("--config-file", default=None, type=click.Path(dir_okay=False), help="Config file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    help="Log level",
)
@click.version_option(__version__, prog_name=PROG)
@click.pass_context
def cli(ctx, config_file: Optional[str], log_level: Optional[str]):
    """DataMiner SiteManager agent installer"""
    try:
        config = load_config(config_file)
    except InstallerError as e:
        _fail(str(e))

    if log_level:
        config.log_level = log_level
    _apply_log_level(config.log_level)

    ctx.obj = config

    if ctx.invoked_subcommand is None:
        click.echo(USAGE)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def help(args):
    """Show usage"""
    click.echo(USAGE)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def install(config: InstallerConfig, args):
    """Install and start the zrok-agent service"""
    # Exactly <token> and <description>; a quoted description is one argument
    if len(args) != 2 or args[0].startswith("-"):
        click.echo("ERROR: install requires <token> and <description>.", err=True)
        click.echo(USAGE)
        sys.exit(1)

    request = InstallRequest(account_token=args[0], site_description=args[1])
    try:
        request.validate()
    except InstallerError as e:
        click.echo(f"ERROR: {e}", err=True)
        click.echo("Example:", err=True)
        click.echo(PLACEHOLDER_EXAMPLE, err=True)
        sys.exit(1)

    try:
        installer = _make_installer(config)
        changed = asyncio.run(installer.install(request))
    except StepFailedError as e:
        _report_step_failure(e)
    except InstallerError as e:
        _fail(str(e))

    if not changed:
        click.echo("Service already installed.")
        return

    click.echo(f"{config.service.name} service installed and started.")


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def uninstall(config: InstallerConfig, args):
    """Stop and remove the zrok-agent service"""
    try:
        installer = _make_installer(config)
        changed = asyncio.run(installer.uninstall())
    except StepFailedError as e:
        _report_step_failure(e)
    except InstallerError as e:
        _fail(str(e))

    if not changed:
        click.echo(f"Service {config.service.name} is not installed.")
        return

    click.echo("Uninstall complete.")


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_obj
def status(config: InstallerConfig, args):
    """Show whether the service is installed"""
    try:
        installer = _make_installer(config)
        state = installer.get_state()
    except (InstallerError, OSError) as e:
        _fail(str(e))

    click.echo(f"{config.service.name}: {state.value}")


def _report_step_failure(error: StepFailedError) -> None:
    click.echo(f"ERROR: {error.step} failed: {error.cause}", err=True)
    if error.completed:
        click.echo(f"Completed before the failure: {', '.join(error.completed)}", err=True)
        click.echo("These steps were not rolled back.", err=True)
    sys.exit(1)


if __name__ == "__main__":
    cli()

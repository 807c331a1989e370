"""Command-line interface for pv-inspect."""

import asyncio
import functools
import os
import signal
import sys
from collections.abc import Callable, Coroutine
from datetime import timedelta
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.datetime import parse_timedelta
from structlog.stdlib import get_logger

from .config import Config
from .constants import CONFIG_FILE_ENV_VAR, EXIT_FAILURE, ROOT_LOGGER
from .exceptions import PVInspectError
from .factory import Factory
from .models.domain.inspection import (
    AccessMode,
    InspectionRequest,
    PortBinding,
    SessionEnd,
)
from .models.domain.pvc import PersistentVolumeClaimSummary
from .templates import TemplateLoader

__all__ = ["main"]


def _common[**P, R](
    func: Callable[P, Coroutine[Any, Any, R]],
) -> Callable[P, R]:
    """Add common Click options and error reporting to a command."""

    @click.option(
        "--debug",
        "-d",
        is_flag=True,
        help="Enable debug logging",
    )
    @click.option(
        "--config-file",
        "-c",
        help="Application configuration file",
        type=Path,
        default=None,
    )
    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return run_with_asyncio(func)(*args, **kwargs)
        except PVInspectError as e:
            get_logger(ROOT_LOGGER).error(str(e))
            sys.exit(EXIT_FAILURE)

    return wrapper


def _load_config(config_file: Path | None, *, debug: bool) -> Config:
    """Load the configuration, applying common command-line overrides."""
    if env_config_path := os.getenv(CONFIG_FILE_ENV_VAR):
        config_file = Path(env_config_path)
    try:
        config = Config.load(config_file)
    except OSError as e:
        raise PVInspectError(f"Cannot read configuration: {e}") from e
    if debug:
        config.debug = debug
        config.configure_logging()
    return config


async def _run_interruptible[T](
    coro: Coroutine[Any, Any, T], interrupted: T
) -> T:
    """Run a coroutine, cancelling it on SIGINT or SIGTERM.

    The coroutine is cancelled rather than the process being killed so that
    it can clean up. Further signals while it does so are ignored.

    Parameters
    ----------
    coro
        Coroutine to run.
    interrupted
        Result to return if a signal cancelled the coroutine.

    Returns
    -------
    Any
        Result of the coroutine, or ``interrupted``.
    """
    loop = asyncio.get_running_loop()
    logger = get_logger(ROOT_LOGGER)
    task = asyncio.ensure_future(coro)
    received: list[str] = []

    def interrupt(signame: str) -> None:
        if received:
            logger.warning("Cleaning up, please wait")
            return
        received.append(signame)
        logger.info(f"Received {signame}, ending session")
        task.cancel()

    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, interrupt, sig.name)
    try:
        return await task
    except asyncio.CancelledError:
        if not received:
            raise
        return interrupted
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)


def _print_claims(claims: list[PersistentVolumeClaimSummary]) -> None:
    table = Table(box=None)
    table.add_column("NAME", no_wrap=True)
    table.add_column("SIZE", justify="right")
    table.add_column("ACCESS MODES")
    table.add_column("STATUS")
    table.add_column("CREATED")
    for claim in claims:
        created = claim.created.isoformat() if claim.created else ""
        table.add_row(
            claim.name,
            claim.size or "",
            ",".join(claim.access_modes),
            claim.phase or "",
            created,
        )
    Console().print(table)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="pv-inspect", message="%(version)s")
def main() -> None:
    """Inspect Kubernetes persistent volume claims through an ephemeral pod.

    The pod is deleted when the session ends. Pods left behind can be removed
    with the sweep command.
    """


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    # The help command is the only command that is passed a context.
    display_help(main, ctx, topic, subtopic)


@main.command("list")
@click.option(
    "--namespace", "-n", default=None, help="Namespace of the claims"
)
@_common
async def list_claims(
    *, config_file: Path | None, debug: bool, namespace: str | None
) -> None:
    """List the persistent volume claims in a namespace."""
    config = _load_config(config_file, debug=debug)
    async with Factory.standalone(config) as factory:
        inspector = factory.create_inspector()
        claims = await inspector.list_claims(namespace or config.namespace)
    _print_claims(claims)


@main.command()
@click.argument("name", required=False)
@click.option(
    "--namespace", "-n", default=None, help="Namespace of the claim"
)
@click.option(
    "--mountpoint",
    "-m",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Also mount the claim locally at this directory with sshfs",
)
@click.option("--rw", is_flag=True, help="Mount the claim read/write")
@click.option(
    "--nowait", is_flag=True, help="Do not wait for the pod to be deleted"
)
@click.option(
    "--template", "-t", default=None, help="Pod template name or file"
)
@click.option(
    "--port",
    "-p",
    type=PortBinding.parse,
    metavar="HOST:POD",
    default=None,
    help="Forward a local port to the pod, as HOST:POD",
)
@click.option(
    "--no-shell",
    is_flag=True,
    help="Do not start a shell, only forward ports and mount",
)
@click.option(
    "--ready-timeout",
    type=parse_timedelta,
    metavar="DURATION",
    default=None,
    help="How long to wait for the pod to become ready",
)
@_common
async def inspect(
    *,
    config_file: Path | None,
    debug: bool,
    name: str | None,
    namespace: str | None,
    mountpoint: Path | None,
    rw: bool,
    nowait: bool,
    template: str | None,
    port: PortBinding | None,
    no_shell: bool,
    ready_timeout: timedelta | None,
) -> None:
    """Open a session in a pod mounting the claim NAME.

    Without NAME, list the claims in the namespace instead. In the shell,
    type ~. at the start of a line to disconnect.
    """
    config = _load_config(config_file, debug=debug)
    if ready_timeout:
        config.ready_timeout = ready_timeout
    namespace = namespace or config.namespace
    async with Factory.standalone(config) as factory:
        inspector = factory.create_inspector()
        if not name:
            claims = await inspector.list_claims(namespace)
            _print_claims(claims)
            logger = get_logger(ROOT_LOGGER)
            logger.warning("Provide the name of the claim to inspect")
            return
        request = InspectionRequest(
            namespace=namespace,
            pvc=name,
            access_mode=AccessMode.READ_WRITE if rw else AccessMode.READ_ONLY,
            mountpoint=mountpoint.absolute() if mountpoint else None,
            port=port,
            template=template or config.template,
            shell=not no_shell,
            wait_for_deletion=not nowait,
        )
        end = await _run_interruptible(
            inspector.inspect(request), SessionEnd.INTERRUPTED
        )
    if end == SessionEnd.INTERRUPTED:
        get_logger(ROOT_LOGGER).info("Session ended", reason=end.value)


@main.command()
@click.option(
    "--age",
    type=parse_timedelta,
    metavar="DURATION",
    default=None,
    help="Delete pods older than this (default: 240m)",
)
@click.option(
    "--namespace",
    "-n",
    default=None,
    help="Only sweep this namespace (default: all namespaces)",
)
@click.option(
    "--nowait", is_flag=True, help="Do not wait for each pod to be deleted"
)
@click.option(
    "--dry-run",
    "-x",
    is_flag=True,
    help="Report what would be deleted without deleting",
)
@_common
async def sweep(
    *,
    config_file: Path | None,
    debug: bool,
    age: timedelta | None,
    namespace: str | None,
    nowait: bool,
    dry_run: bool,
) -> None:
    """Delete inspection pods that are stale or marked for deletion."""
    config = _load_config(config_file, debug=debug)
    async with Factory.standalone(config) as factory:
        sweeper = factory.create_sweeper()
        report = await _run_interruptible(
            sweeper.sweep(
                age or config.sweep_age,
                namespace=namespace,
                wait=not nowait,
                dry_run=dry_run,
            ),
            None,
        )
    if report and report.failed:
        raise PVInspectError(f"Failed to delete {len(report.failed)} pods")


@main.command()
@_common
async def templates(*, config_file: Path | None, debug: bool) -> None:
    """List the available pod templates."""
    config = _load_config(config_file, debug=debug)
    loader = TemplateLoader(config.template_directory)
    table = Table(box=None)
    table.add_column("NAME", no_wrap=True)
    table.add_column("MOUNT")
    table.add_column("DESCRIPTION")
    for name in loader.names():
        template = loader.load(name)
        mount = "yes" if template.supports_mount else "no"
        table.add_row(name, mount, template.description)
    Console().print(table)

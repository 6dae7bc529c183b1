"""CLI entrypoint for devloop."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from devloop import __version__
from devloop.controllers import CommandOutcome, DevloopCliController, LoopCommand
from devloop.logging_setup import setup_logging
from devloop.orchestrator import EntryPoint

click.rich_click.USE_MARKDOWN = True
CONTROLLER = DevloopCliController()


def _loop_options(command: Callable) -> Callable:
    options = [
        click.option(
            "--project-root",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Directory the globs are relative to. Defaults to DEVLOOP_PROJECT_ROOT or `.`.",
        ),
        click.option(
            "--output-dir",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Build output directory. Defaults to DEVLOOP_OUTPUT_DIR or `dist`.",
        ),
        click.option(
            "--port",
            type=click.IntRange(min=1, max=65_535),
            default=None,
            help="Static server port. Defaults to DEVLOOP_SERVER_PORT or 3000.",
        ),
        click.option(
            "--source-glob",
            default=None,
            help="Glob of sources to compile, for example `src/*.elm`.",
        ),
        click.option(
            "--static-glob",
            default=None,
            help="Glob of files copied verbatim, for example `src/*.{html,css}`.",
        ),
        click.option(
            "--debounce-ms",
            type=click.IntRange(min=0),
            default=None,
            help="Coalesce change events arriving within this window. Defaults to 200.",
        ),
        click.option(
            "--optimize/--no-optimize",
            default=None,
            help="Pass `--optimize` to the compiler. Enabled by default.",
        ),
        click.option(
            "--jobs",
            "-j",
            type=click.IntRange(min=1),
            default=None,
            help="Compile at most this many sources at once. Defaults to the CPU count.",
        ),
    ]
    for option in reversed(options):
        command = option(command)
    return command


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="devloop")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Debug logging.")
@click.pass_context
def devloop(ctx: click.Context, verbose: bool) -> None:
    """Compile, copy, serve and watch a front-end project.

    Without a command, runs `default`.
    """

    setup_logging(verbose=verbose)
    if ctx.invoked_subcommand is None:
        ctx.invoke(default)


@devloop.command("build")
@_loop_options
def build(**options: object) -> None:
    """Compile sources, then copy static files, once."""

    _finish(CONTROLLER.run(EntryPoint.BUILD, LoopCommand(**options)))


@devloop.command("default")
@_loop_options
def default(**options: object) -> None:
    """Serve the output directory, build once and rebuild on change until interrupted."""

    _finish(CONTROLLER.run(EntryPoint.DEFAULT, LoopCommand(**options)))


@devloop.command("serve")
@_loop_options
def serve(**options: object) -> None:
    """Serve the output directory until interrupted."""

    _finish(CONTROLLER.run(EntryPoint.SERVE, LoopCommand(**options)))


@devloop.command("watch")
@_loop_options
def watch(**options: object) -> None:
    """Rebuild compile/copy steps on change until interrupted, without serving."""

    _finish(CONTROLLER.run(EntryPoint.WATCH, LoopCommand(**options)))


def _finish(outcome: CommandOutcome) -> None:
    for line in outcome.lines:
        click.echo(line)
    for line in outcome.errors:
        click.echo(line, err=True)
    if outcome.exit_code != 0:
        raise SystemExit(outcome.exit_code)


if __name__ == "__main__":  # pragma: no cover
    devloop()

"""
zemuctl - Emulator Housekeeping Command-Line Interface
======================================================

Commands
--------
- **stop-all**: Remove every emulator process started by the harness
- **pull**: Pull the emulator image
- **compare**: Compare a candidate snapshot directory with its golden set
- **status-message**: Describe and classify a status word

Usage Examples
--------------
Clean up after a crashed test run:
    $ zemuctl stop-all

Pull the emulator image before running tests offline:
    $ zemuctl pull

Re-check a walk without re-running it:
    $ zemuctl compare snapshots/s-sign snapshots-tmp/s-sign 6

Decode a status word from a failing test:
    $ zemuctl status-message 6b00

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
from pathlib import Path

import click

from zemu import __version__
from zemu.cli.errors import handle_cli_exception
from zemu.comms.status import classify, status_message
from zemu.emulator.instance import BASE_NAME
from zemu.emulator.runtime import DockerRuntime
from zemu.testkit.config import get_default_config
from zemu.testkit.snapshots import compare_snapshots


# =============================================================================
# Status Word Parameter Type
# =============================================================================

class StatusWord(click.ParamType):
    """
    Click parameter type for status words.

    Accepts hexadecimal with or without 0x (6985, 0x6985).
    """
    name = "status_word"

    def convert(self, value, param, ctx) -> int:
        if isinstance(value, int):
            return value
        try:
            code = int(value, 16)
        except ValueError:
            self.fail(f"'{value}' is not a hexadecimal status word", param, ctx)
        if not 0 <= code <= 0xFFFF:
            self.fail(f"'{value}' does not fit in 16 bits", param, ctx)
        return code


STATUS_WORD = StatusWord()


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.version_option(__version__, "--version", "-V", prog_name="zemuctl")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """
    Emulator housekeeping for the zemu test harness.

    \b
    Commands:
      stop-all        Remove every harness emulator process
      pull            Pull the emulator image
      compare         Compare candidate snapshots with the golden set
      status-message  Describe a status word

    \b
    Examples:
      zemuctl stop-all
      zemuctl compare snapshots/s-sign snapshots-tmp/s-sign 6
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# Process Commands
# =============================================================================

@main.command("stop-all")
@click.option(
    "--prefix",
    default=BASE_NAME,
    show_default=True,
    help="Name prefix of the processes to remove",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Seconds each docker call may take (default: kill timeout)",
)
@click.pass_context
def cmd_stop_all(ctx: click.Context, prefix: str, timeout: float) -> None:
    """Remove every emulator process whose name starts with PREFIX."""
    verbose = ctx.obj["verbose"]
    try:
        runtime = DockerRuntime(timeout=timeout or get_default_config().kill_timeout)
        handles = runtime.list_by_name_prefix(prefix)
        for handle in handles:
            if verbose:
                click.echo(f"  Removing {handle.name}...")
            runtime.remove_process(handle, force=True)
        click.echo(f"Removed {len(handles)} emulator process(es)")
    except Exception as e:
        handle_cli_exception(e, verbose=verbose)


@main.command("pull")
@click.option("--image", default=None, help="Image reference (default: configured image)")
@click.pass_context
def cmd_pull(ctx: click.Context, image: str) -> None:
    """Pull the emulator image."""
    verbose = ctx.obj["verbose"]
    try:
        image = image or get_default_config().image
        click.echo(f"Pulling {image}...")
        DockerRuntime().pull_image(image)
        click.echo("Done")
    except Exception as e:
        handle_cli_exception(e, verbose=verbose)


# =============================================================================
# Snapshot Commands
# =============================================================================

@main.command("compare")
@click.argument("golden", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument("candidate", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument("last_index", type=click.IntRange(min=0))
@click.pass_context
def cmd_compare(ctx: click.Context, golden: Path, candidate: Path, last_index: int) -> None:
    """
    Compare images 0..LAST_INDEX of CANDIDATE with GOLDEN.

    \b
    Examples:
      zemuctl compare snapshots/s-sign snapshots-tmp/s-sign 6
    """
    verbose = ctx.obj["verbose"]
    try:
        compare_snapshots(golden, candidate, last_index)
        click.echo(f"{last_index + 1} image(s) match")
    except Exception as e:
        handle_cli_exception(e, verbose=verbose, error_type="Comparison")


# =============================================================================
# Status Word Commands
# =============================================================================

@main.command("status-message")
@click.argument("code", type=STATUS_WORD)
def cmd_status_message(code: int) -> None:
    """Describe status word CODE and show whether waits treat it as critical."""
    click.echo(f"0x{code:04X}: {status_message(code)} ({classify(code).value})")


if __name__ == "__main__":
    main()

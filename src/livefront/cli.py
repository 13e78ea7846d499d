"""
Command-line interface for livefront.

This module provides the `livefront` CLI tool:

    livefront compile [-r] [-w] [-o DIR] [--transitive]   # compile sources
    livefront serve [port] [hostname] [-c] [-l]           # serve files locally
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from livefront import __version__, config, output
from livefront.build import BuildSummary, FileState, RebuildEngine, ScanError
from livefront.live import LiveReloadHub, create_app, serve_app
from livefront.watch import PollingWatcher, Watcher, WatchfilesWatcher


@dataclass
class CompileArgs:
    """Arguments for the compile command."""

    directory: Path
    recursive: bool = False
    watch: bool = False
    output: Optional[Path] = None
    transitive: bool = False
    native_watch: bool = False
    verbose: bool = False


@dataclass
class ServeArgs:
    """Arguments for the serve command."""

    directory: Path
    port: int = config.DEFAULT_PORT
    hostname: str = config.DEFAULT_HOST
    compile: bool = False
    live: bool = False
    output: Optional[Path] = None
    native_watch: bool = False
    verbose: bool = False


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose or config.is_debug() else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    output.init_timer()
    output.set_verbose(verbose)


def make_watcher(native: bool, interval: float) -> Watcher:
    if native:
        return WatchfilesWatcher(interval)
    return PollingWatcher(interval)


def print_summary(console: Console, engine: RebuildEngine, summary: BuildSummary) -> None:
    """Render the initial compile pass as a table."""
    table = Table(title="Build summary")
    table.add_column("Source")
    table.add_column("Output")
    table.add_column("Status")
    table.add_column("Watched", justify="center")

    watched = set(summary.watched)
    for action in engine.registry.actions():
        if action.state == FileState.COMPILED:
            status = "[green]compiled[/green]"
        elif action.state == FileState.FAILED:
            status = "[red]failed[/red]"
        else:
            status = "[yellow]pending[/yellow]"
        table.add_row(
            action.display_path,
            action.display_output_path,
            status,
            "yes" if action.source_path in watched else "",
        )

    console.print(table)
    if engine.errors.has_errors() or engine.errors.has_warnings():
        console.print(f"[bold]Problems:[/bold] {engine.errors.format_summary()}")


async def run_compile(args: CompileArgs, console: Console) -> bool:
    """Initial pass, then (in watch mode) recompile on modification until stopped.

    Returns:
        True if every file compiled in the initial pass
    """
    watcher = make_watcher(args.native_watch, config.POLL_INTERVAL) if args.watch else None
    engine = RebuildEngine(
        args.directory,
        watcher=watcher,
        recursive=args.recursive,
        watch=args.watch,
        output_dir=args.output,
        transitive=args.transitive,
    )
    try:
        with output.TimedLogger("Compiling sources", verbose_only=True):
            summary = await engine.start()
        print_summary(console, engine, summary)
        if args.watch:
            output.log("Watching for changes. Press Ctrl+C to stop.")
            await engine.serve_forever()
        return summary.success
    finally:
        await engine.stop()


async def run_serve(args: ServeArgs, console: Console) -> None:
    """Optionally compile and watch, then serve the directory until stopped."""
    engine: Optional[RebuildEngine] = None
    hub: Optional[LiveReloadHub] = None
    asset_watcher: Optional[Watcher] = None
    try:
        if args.compile:
            engine = RebuildEngine(
                args.directory,
                watcher=make_watcher(args.native_watch, config.POLL_INTERVAL),
                recursive=True,
                watch=True,
                output_dir=args.output,
            )
            summary = await engine.start()
            print_summary(console, engine, summary)

        if args.live:
            hub = LiveReloadHub(args.directory)
            asset_watcher = make_watcher(args.native_watch, config.ASSET_POLL_INTERVAL)
            hub.watch_assets(asset_watcher)

        app = create_app(args.directory, hub)
        await serve_app(app, args.hostname, args.port, log_level="info" if args.verbose else "warning")
    finally:
        if hub is not None:
            hub.unwatch_assets()
        if asset_watcher is not None:
            await asset_watcher.close()
        if engine is not None:
            await engine.stop()


def compile_command(args: CompileArgs) -> None:
    """Compile every source with a registered compiler.

    Examples:
        livefront compile              # Compile the current directory
        livefront compile -r           # Include subdirectories
        livefront compile -r -w        # Keep recompiling on modification
        livefront compile -o build     # Write outputs under build/
    """
    console = Console()
    try:
        success = asyncio.run(run_compile(args, console))
    except ScanError as e:
        output.log_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        output.log("Stopped.")
        sys.exit(130)  # Standard exit code for SIGINT
    except Exception as e:
        output.log_error(f"{type(e).__name__}: {e}")
        logging.debug("Unexpected error in compile command", exc_info=True)
        sys.exit(1)

    sys.exit(0 if success else 1)


def serve_command(args: ServeArgs) -> None:
    """Serve the current directory locally.

    Examples:
        livefront serve                # http://127.0.0.1:3000/
        livefront serve 8080 0.0.0.0   # Custom port and hostname
        livefront serve -c -l          # Compile, watch and live-reload
    """
    console = Console()
    try:
        asyncio.run(run_serve(args, console))
    except ScanError as e:
        output.log_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        output.log("Stopped.")
        sys.exit(130)
    except OSError as e:
        output.log_error(f"Cannot serve on {args.hostname}:{args.port}: {e}")
        sys.exit(1)

    sys.exit(0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="livefront",
        description="livefront - incremental front-end compiler with live reload",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"livefront {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Compile command
    compile_parser = subparsers.add_parser(
        "compile",
        help="Compile sources in the current directory",
    )
    compile_parser.add_argument(
        "-r",
        "--recursive",
        action="store_true",
        help="Compile files in subdirectories too",
    )
    compile_parser.add_argument(
        "-w",
        "--watch",
        action="store_true",
        help="Recompile files and their dependents on modification",
    )
    compile_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Directory to write compiled files to (default: next to their sources)",
    )
    compile_parser.add_argument(
        "--transitive",
        action="store_true",
        help="Recompile every indirect dependent, not just direct ones",
    )

    # Serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve files in the current directory over HTTP",
    )
    serve_parser.add_argument(
        "port",
        nargs="?",
        type=int,
        default=config.DEFAULT_PORT,
        help=f"Port to listen on (default: {config.DEFAULT_PORT})",
    )
    serve_parser.add_argument(
        "hostname",
        nargs="?",
        default=config.DEFAULT_HOST,
        help=f"Hostname to bind (default: {config.DEFAULT_HOST})",
    )
    serve_parser.add_argument(
        "-c",
        "--compile",
        action="store_true",
        help="Compile recursively and keep watching while serving",
    )
    serve_parser.add_argument(
        "-l",
        "--live",
        action="store_true",
        help="Reload pages in the browser when html/css/js files change",
    )
    serve_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Directory to write compiled files to (with --compile)",
    )

    for sub in (compile_parser, serve_parser):
        sub.add_argument(
            "-d",
            "--directory",
            type=Path,
            default=Path.cwd(),
            help="Working directory (default: current directory)",
        )
        sub.add_argument(
            "--native-watch",
            action="store_true",
            help="Use filesystem events instead of polling",
        )
        sub.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Show verbose output",
        )

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """livefront - incremental front-end compiler with live reload."""
    parser = build_parser()
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    if not parsed_args.directory.is_dir():
        print(f"Error: Not a directory: {parsed_args.directory}", file=sys.stderr)
        sys.exit(2)

    setup_logging(parsed_args.verbose)
    output.log_header("livefront", __version__)

    if parsed_args.command == "compile":
        compile_args = CompileArgs(
            directory=parsed_args.directory,
            recursive=parsed_args.recursive,
            watch=parsed_args.watch,
            output=parsed_args.output,
            transitive=parsed_args.transitive,
            native_watch=parsed_args.native_watch,
            verbose=parsed_args.verbose,
        )
        compile_command(compile_args)
    elif parsed_args.command == "serve":
        serve_args = ServeArgs(
            directory=parsed_args.directory,
            port=parsed_args.port,
            hostname=parsed_args.hostname,
            compile=parsed_args.compile,
            live=parsed_args.live,
            output=parsed_args.output,
            native_watch=parsed_args.native_watch,
            verbose=parsed_args.verbose,
        )
        serve_command(serve_args)


if __name__ == "__main__":
    main()

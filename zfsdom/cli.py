"""Command line interface for zfsdom.

Parses arguments, runs one operation and renders its result. This is the
only place that decides output formatting and the process exit status.
"""

import argparse
import asyncio
import json
import os
import sys
from typing import TextIO

import structlog

from . import __version__
from .core.address import parse_destination, parse_host, parse_source
from .core.config_loader import ZfsdomConfig, load_config
from .core.exceptions import AddressError, ConfigurationError, ZfsdomError
from .core.logging_config import setup_logging
from .models.results import DomainInfo, MigrationResult, TransferResult
from .services import MigrationCoordinator, TransferService
from .utils import format_size

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

GREEN = "\x1b[1m\x1b[32m"
RED = "\x1b[1m\x1b[31m"
BLUE = "\x1b[34m"
RESET = "\x1b[0m"


class Printer:
    """Writes result lines, colored only when the stream is a terminal."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stdout
        self.color = self.stream.isatty()

    def line(self, text: str = "", color: str | None = None) -> None:
        if color and self.color:
            text = f"{color}{text}{RESET}"
        print(text, file=self.stream, flush=True)

    def ok(self, text: str) -> None:
        self.line(f"✔ {text}", GREEN)

    def fail(self, text: str) -> None:
        self.line(f"✖ {text}", RED)


class ProgressBar:
    """Single-line percentage bar redrawn on stderr."""

    def __init__(self, stream: TextIO | None = None, width: int = 30):
        self.stream = stream or sys.stderr
        self.width = width
        self.active = False

    def __call__(self, transferred: int, total: int | None) -> None:
        if not total:
            self.stream.write(f"\rtransferred {format_size(transferred)}")
        else:
            fraction = min(transferred / total, 1.0)
            filled = int(fraction * self.width)
            bar = "#" * filled + "-" * (self.width - filled)
            self.stream.write(
                f"\r[{bar}] {fraction:6.1%} {format_size(transferred)} / {format_size(total)}"
            )
        self.stream.flush()
        self.active = True

    def finish(self) -> None:
        if self.active:
            self.stream.write("\n")
            self.stream.flush()
            self.active = False


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="zfsdom",
        description="Incremental ZFS replication and live migration of libvirt domains",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", default=os.getenv("ZFSDOM_CONFIG"), help="Host inventory file path"
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("ZFSDOM_LOG_LEVEL", "WARNING"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument("--log-file", default=None, help="Also write JSON logs to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    transfer = subparsers.add_parser("transfer", help="Transfer a dataset to another host")
    source = transfer.add_mutually_exclusive_group(required=True)
    source.add_argument("--dataset", metavar="SRC", help="[HOST[:PORT]:]DATASET")
    source.add_argument("--path", metavar="SRC", help="[HOST[:PORT]:]PATH of a file on the dataset")
    source.add_argument("--domain", metavar="SRC", help="[HOST[:PORT]:]DOMAIN whose disk to transfer")
    _add_execution_arguments(transfer)

    migrate = subparsers.add_parser("migrate", help="Live-migrate a domain to another host")
    migrate.add_argument("--domain", metavar="SRC", required=True, help="[HOST[:PORT]:]DOMAIN")
    _add_execution_arguments(migrate)

    list_domains = subparsers.add_parser("list-domains", help="List libvirt domains")
    list_domains.add_argument("host", nargs="?", default=None, help="HOST[:PORT], local when omitted")
    list_domains.add_argument("--all", action="store_true", dest="show_all", help="Include inactive domains")
    list_domains.add_argument("--plain", action="store_true", help="Comma separated output")

    return parser


def _add_execution_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("destination", metavar="DEST", help="HOST[:PORT][(ALTHOST)][:DATASET]")
    parser.add_argument(
        "--do", action="store_true", dest="execute", help="Execute; the default is a dry run"
    )
    parser.add_argument(
        "-f", "--force", action="store_true", help="Overwrite conflicting destination state"
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)


def render_transfer(result: TransferResult, printer: Printer) -> None:
    """Findings first, then the outcome."""
    if result.source_dataset:
        printer.line(f"source dataset: {result.source_dataset}")
        found = "found" if result.destination_found else "not found"
        printer.line(f"destination dataset: {result.destination_dataset} ({found})")
        if not result.destination_found and result.destination_parent:
            parent_found = "found" if result.destination_parent_found else "not found"
            printer.line(f"destination parent: {result.destination_parent} ({parent_found})")
        printer.line(f"latest common snapshot: {result.basis_snapshot or '- none found -'}")
        if result.mode:
            printer.line(f"transfer mode: {result.mode.value}")

    if result.command:
        printer.line(result.command, BLUE)

    if result.dry_run:
        if result.success:
            printer.ok("dry run, nothing transferred (use --do to execute)")
        else:
            printer.fail(result.error or "transfer check failed")
        return

    if result.success:
        if result.total_bytes:
            printer.line(f"transferred {format_size(result.total_bytes)}")
        printer.ok("transfer successful")
    else:
        if result.error:
            printer.line(result.error, RED)
        printer.fail("transfer failed")


def render_migration(result: MigrationResult, printer: Printer) -> None:
    """One line per executed phase, then the outcome."""
    for phase in result.phases:
        text = phase.phase.value.replace("_", " ")
        if phase.detail:
            text = f"{text}: {phase.detail}"
        if phase.success:
            printer.ok(text)
        else:
            printer.fail(text)

    if result.pre_copy and result.pre_copy.basis_snapshot:
        printer.line(f"latest common snapshot: {result.pre_copy.basis_snapshot}")

    if result.success:
        if result.dry_run:
            printer.ok(f"dry run for {result.domain} passed (use --do to execute)")
        else:
            printer.ok(f"{result.domain} migrated to {result.destination}")
    else:
        printer.fail(result.error or f"migration of {result.domain} failed")


def render_domains(domains: list[DomainInfo], plain: bool, printer: Printer) -> None:
    if plain:
        for domain in domains:
            printer.line(",".join([domain.id, domain.name, domain.state]))
    else:
        printer.line(json.dumps([domain.model_dump() for domain in domains], indent=2))


async def run_command(args: argparse.Namespace, config: ZfsdomConfig, printer: Printer) -> int:
    """Dispatch a parsed command; returns the exit status."""
    if args.command == "list-domains":
        domains = await TransferService(config).list_domains(args.host, show_all=args.show_all)
        render_domains(domains, args.plain, printer)
        return EXIT_OK

    progress = ProgressBar()

    if args.command == "migrate":
        coordinator = MigrationCoordinator(config=config, on_output=printer.line)
        result = await coordinator.migrate(
            parse_source(args.domain),
            parse_destination(args.destination),
            execute=args.execute,
            force=args.force,
            on_progress=progress,
        )
        progress.finish()
        render_migration(result, printer)
        return EXIT_OK if result.success else EXIT_FAILED

    service = TransferService(config)
    if args.dataset:
        operation, source = service.transfer_by_dataset, args.dataset
    elif args.path:
        operation, source = service.transfer_by_path, args.path
    else:
        operation, source = service.transfer_by_domain, args.domain

    result = await operation(
        parse_source(source),
        parse_destination(args.destination),
        execute=args.execute,
        force=args.force,
        on_progress=progress,
    )
    progress.finish()
    render_transfer(result, printer)
    return EXIT_OK if result.success else EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(log_level=args.log_level, log_file=args.log_file)
    logger = structlog.get_logger()
    printer = Printer()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        printer.fail(str(e))
        return EXIT_USAGE

    try:
        return asyncio.run(run_command(args, config, printer))
    except AddressError as e:
        printer.fail(str(e))
        return EXIT_USAGE
    except ZfsdomError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        printer.fail(str(e))
        return EXIT_FAILED
    except KeyboardInterrupt:
        printer.fail("interrupted")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())

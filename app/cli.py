"""Command line entry points: ``brunodo`` and the ``nonodo`` pass-through wrapper."""

from __future__ import annotations

import argparse
import logging
import platform
import signal
import sys
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Sequence, TextIO

from app.config import AppConfig, InstallPaths, get_app_config, resolve_paths
from app.version import get_app_version
from services.provision.builder import build_client, build_ledger_store, build_provisioner
from services.provision.cancellation import CancelToken
from services.provision.launcher import ProcessLauncher
from services.provision.ledger import LedgerStore
from services.provision.models import (
    DownloadTransfer,
    NoDefaultVersionError,
    OperationCancelled,
    ProvisionError,
)
from services.provision.provisioner import Provisioner
from services.provision.tags import list_release_tags
from services.provision.transport import RetrievingClient
from services.provision.versioning import require_semver
from shared.logging_config import configure_cli_logging

_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


class _ProgressReporter:
    """Log download progress every ``step`` percent."""

    def __init__(self, step: int = 10) -> None:
        self._step = step
        self._last: dict[str, int] = {}

    def __call__(self, transfer: DownloadTransfer) -> None:
        fraction = transfer.fraction
        if fraction is None:
            _LOGGER.debug("Downloaded %s bytes of %s", transfer.bytes_received, transfer.url)
            return
        percent = int(fraction * 100) // self._step * self._step
        if percent <= self._last.get(transfer.url, -1):
            return
        self._last[transfer.url] = percent
        _LOGGER.info(
            "Downloading... %s%% (%s/%s bytes)",
            percent,
            transfer.bytes_received,
            transfer.expected_length,
        )


class CommandContext:
    """Collaborators shared by the subcommands of one invocation."""

    def __init__(
        self,
        config: AppConfig,
        paths: InstallPaths,
        *,
        client: RetrievingClient | None = None,
        provisioner: Provisioner | None = None,
        ledger_store: LedgerStore | None = None,
        launcher: ProcessLauncher | None = None,
        cancel_token: CancelToken | None = None,
        out: TextIO | None = None,
    ) -> None:
        self.config = config
        self.paths = paths
        self.cancel_token = cancel_token or CancelToken()
        self.client = client or build_client(config)
        self.provisioner = provisioner or build_provisioner(
            config, paths, client=self.client, on_progress=_ProgressReporter()
        )
        self.ledger_store = ledger_store or build_ledger_store(paths)
        self.launcher = launcher or ProcessLauncher(cancel_token=self.cancel_token)
        self.out = out if out is not None else sys.stdout


ContextFactory = Callable[[AppConfig, InstallPaths], CommandContext]


def _host_description() -> str:
    return f"{platform.machine()} {platform.system()}"


def _bootstrap_directories(paths: InstallPaths) -> None:
    for directory in (paths.config_dir, paths.install_dir):
        if directory.exists():
            _LOGGER.debug("Dir %s already created", directory)
        else:
            directory.mkdir(parents=True, exist_ok=True)
            _LOGGER.debug("Dir %s created", directory)


@contextmanager
def _cancel_on_interrupt(token: CancelToken) -> Iterator[None]:
    """Turn Ctrl+C into a cancellation of ``token`` while provisioning."""

    def _handler(signum: int, frame: Any) -> None:
        token.cancel("Interrupted by user")

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread; fall back to KeyboardInterrupt.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def cmd_install(context: CommandContext, version: str, verify: bool = False) -> int:
    require_semver(version)
    ledger = context.ledger_store.load()
    if version in ledger:
        _LOGGER.info("Version %s already installed", version)
        if verify:
            with _cancel_on_interrupt(context.cancel_token):
                result = context.provisioner.ensure(
                    version, context.cancel_token, verify_existing=True
                )
            _LOGGER.info("Verified nonodo %s (hash %s)", version, result.hash or "unchecked")
        return EXIT_OK

    _LOGGER.info("Installing nonodo %s for %s", version, _host_description())
    with _cancel_on_interrupt(context.cancel_token):
        result = context.provisioner.ensure(version, context.cancel_token)
    _LOGGER.info("Installed nonodo %s with hash %s", version, result.hash)

    ledger.add_version(version, result.hash or "")
    context.ledger_store.save(ledger)
    _LOGGER.info("Version %s added to the list of installed versions", version)
    return EXIT_OK


def _select_run_version(context: CommandContext, requested: str | None) -> tuple[str, bool]:
    """Return the version to run and whether it is already recorded."""

    if requested:
        require_semver(requested)
        return requested, requested in context.ledger_store.load()
    ledger = context.ledger_store.load()
    try:
        entry = ledger.resolve_default()
    except NoDefaultVersionError as exc:
        pinned = context.config.release.pinned_version
        _LOGGER.info("%s; using pinned version %s", exc, pinned)
        return pinned, pinned in ledger
    _LOGGER.info("Configuration loaded")
    return entry.version, True


def cmd_run(
    context: CommandContext,
    version: str | None,
    args: Sequence[str],
    verify: bool = False,
) -> int:
    selected, recorded = _select_run_version(context, version)
    _LOGGER.info("Running nonodo %s for %s", selected, _host_description())
    with _cancel_on_interrupt(context.cancel_token):
        result = context.provisioner.ensure(
            selected, context.cancel_token, verify_existing=True if verify else None
        )

    if not recorded or result.downloaded:
        ledger = context.ledger_store.load()
        ledger.add_version(selected, result.hash or "")
        context.ledger_store.save(ledger)
        _LOGGER.debug("Recorded nonodo %s in the ledger", selected)

    outcome = context.launcher.run(result.path, list(args))
    if outcome.signal is not None:
        context.launcher.mirror_exit(outcome)
    return outcome.exit_code


def cmd_list(context: CommandContext, installed_only: bool) -> int:
    ledger = context.ledger_store.load()
    out = context.out
    if installed_only:
        if not len(ledger):
            print("No versions installed", file=out)
            return EXIT_OK
        for entry in ledger:
            marker = "*" if entry.version == ledger.default_version else " "
            print(f"{marker} {entry.version}\t{entry.content_hash}\t{entry.installed_at}", file=out)
        return EXIT_OK

    with _cancel_on_interrupt(context.cancel_token):
        tags = list_release_tags(
            context.client, context.config.release.tags_url, context.cancel_token
        )
    print("version\tsha_commit\tinstalled", file=out)
    for tag in tags:
        installed = "yes" if tag.version in ledger else "no"
        print(f"{tag.version}\t{tag.commit or ''}\t{installed}", file=out)
    return EXIT_OK


def cmd_default(context: CommandContext, version: str) -> int:
    require_semver(version)
    ledger = context.ledger_store.load()
    ledger.set_default(version)
    context.ledger_store.save(ledger)
    _LOGGER.info("Default version set to %s", version)
    return EXIT_OK


def _add_verify_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Re-hash the cached archive of an installed version against its digest.",
    )


def _add_debug_flag(parser: argparse.ArgumentParser) -> None:
    # SUPPRESS keeps an absent subcommand flag from resetting the global one.
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Show debug information.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brunodo", description="Install and run versions of the nonodo node."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_app_version()}")
    parser.add_argument("-d", "--debug", action="store_true", help="Show debug information.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    install = subparsers.add_parser("install", help="Install a specific version.")
    install.add_argument("release", metavar="VERSION", help="Release version, e.g. 2.1.1-beta.")
    _add_verify_flag(install)
    _add_debug_flag(install)

    run = subparsers.add_parser("run", help="Run nonodo, installing it when needed.")
    run.add_argument(
        "-v",
        "--version",
        dest="release",
        default=None,
        help="Version to run instead of the default one.",
    )
    _add_verify_flag(run)
    run.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to nonodo.")

    listing = subparsers.add_parser("list", help="List published versions.")
    listing.add_argument(
        "--installed", action="store_true", help="List locally installed versions instead."
    )
    _add_debug_flag(listing)

    default = subparsers.add_parser("default", help="Select the version used by 'run'.")
    default.add_argument("release", metavar="VERSION")
    return parser


def _dispatch(arguments: argparse.Namespace, context: CommandContext) -> int:
    if arguments.command == "install":
        return cmd_install(context, arguments.release, arguments.verify)
    if arguments.command == "run":
        forwarded = list(arguments.args)
        if forwarded[:1] == ["--"]:
            forwarded = forwarded[1:]
        return cmd_run(context, arguments.release, forwarded, arguments.verify)
    if arguments.command == "list":
        return cmd_list(context, arguments.installed)
    if arguments.command == "default":
        return cmd_default(context, arguments.release)
    raise ValueError(f"Unknown command: {arguments.command}")


def _execute(
    run_command: Callable[[CommandContext], int], context_factory: ContextFactory | None = None
) -> int:
    try:
        paths = resolve_paths()
        _bootstrap_directories(paths)
        context = (context_factory or CommandContext)(get_app_config(), paths)
        return run_command(context)
    except OperationCancelled as exc:
        _LOGGER.error("Cancelled: %s", exc)
        return EXIT_CANCELLED
    except KeyboardInterrupt:
        _LOGGER.error("Interrupted")
        return EXIT_CANCELLED
    except ProvisionError as exc:
        _LOGGER.error("%s", exc)
        _LOGGER.debug("Command failed", exc_info=True)
        return EXIT_FAILURE
    except OSError as exc:
        _LOGGER.error("Filesystem error: %s", exc)
        return EXIT_FAILURE


def main(
    argv: Sequence[str] | None = None, *, context_factory: ContextFactory | None = None
) -> int:
    """Entry point of the ``brunodo`` command."""

    arguments = build_parser().parse_args(argv)
    configure_cli_logging(debug=getattr(arguments, "debug", False))
    _LOGGER.debug("brunodo %s: %s", get_app_version(), arguments.command)
    return _execute(lambda context: _dispatch(arguments, context), context_factory)


def run_wrapper(
    argv: Sequence[str] | None = None, *, context_factory: ContextFactory | None = None
) -> int:
    """Entry point of the ``nonodo`` command: run the default version with every argument."""

    forwarded = list(sys.argv[1:] if argv is None else argv)
    configure_cli_logging()
    return _execute(lambda context: cmd_run(context, None, forwarded), context_factory)


__all__ = [
    "CommandContext",
    "EXIT_CANCELLED",
    "EXIT_FAILURE",
    "EXIT_OK",
    "build_parser",
    "cmd_default",
    "cmd_install",
    "cmd_list",
    "cmd_run",
    "main",
    "run_wrapper",
]

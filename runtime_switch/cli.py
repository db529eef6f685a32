"""
Command-line interface for runtime-switch.

Usage:
    runtime-switch status [FAMILY]          # Installed and active variants
    runtime-switch list FAMILY              # Installed variants of one family
    runtime-switch install FAMILY VERSION   # Install (first working candidate)
    runtime-switch switch FAMILY VERSION    # Make VERSION the active variant
    runtime-switch uninstall FAMILY [VERSION]
    runtime-switch refresh                  # Rebuild process PATH from persisted state
    runtime-switch java-home [PATH] [--force]
    runtime-switch menu [FAMILY]            # Interactive numbered menu
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass

from .common import split_path
from .config import Config, load_config, validate_config
from .discovery import scan_homes, validate_home
from .environment import EnvironmentSynchronizer, default_store
from .errors import PreconditionError, ResolutionExhaustedError, SwitchError
from .families import FAMILIES, JAVA, RuntimeFamily, family_names, get_family
from .installer import NO_CANDIDATE_SUCCEEDED, MutationDriver, MutationResult
from .logging_config import get_logger, setup_logging
from .normalizer import normalize
from .package_managers import ScoopLayout, ScoopPackageManager
from .probe import find_variant
from .render import render_homes, render_result, render_status, render_variants


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PRECONDITION = 2


@dataclass
class Context:
    """Collaborators shared by every command."""
    config: Config
    layout: ScoopLayout
    package_manager: ScoopPackageManager
    synchronizer: EnvironmentSynchronizer
    driver: MutationDriver
    json_output: bool = False
    verbose: bool = False


def build_context(args: argparse.Namespace) -> Context:
    """Load configuration and wire up the package manager, synchronizer and driver."""
    config = load_config(args.config, verbose=args.verbose)
    for warning in validate_config(config, known_families=set(family_names())):
        get_logger().warning(warning)

    package_manager = ScoopPackageManager.from_config(config.scoop, verbose=args.verbose)
    synchronizer = EnvironmentSynchronizer(default_store(config), verbose=args.verbose)
    driver = MutationDriver(package_manager, synchronizer, config, verbose=args.verbose)
    return Context(
        config=config,
        layout=package_manager.layout,
        package_manager=package_manager,
        synchronizer=synchronizer,
        driver=driver,
        json_output=args.json,
        verbose=args.verbose,
    )


def _emit_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _finish(ctx: Context, result: MutationResult) -> int:
    """Report a mutation result and map it to an exit code."""
    if ctx.json_output:
        _emit_json(result.to_dict())
    else:
        render_result(result)

    if result.state == NO_CANDIDATE_SUCCEEDED:
        raise ResolutionExhaustedError(result.requested, result.attempted)
    return EXIT_OK if result.success else EXIT_FAILURE


def _report_error(error: SwitchError) -> None:
    logger = get_logger()
    logger.error(error.message)
    if error.remediation:
        logger.error(f"  -> {error.remediation}")


def _uninstall_target(ctx: Context, family: RuntimeFamily, version: str | None) -> str | None:
    """Pick the identifier to uninstall: first installed candidate, else the active variant."""
    status = ctx.driver.status(family)
    if version:
        candidate = normalize(family, version)
        for identifier in candidate:
            existing = find_variant(status.installed, identifier)
            if existing is not None:
                return existing.identifier
        return candidate.primary

    if status.active is not None:
        return status.active.identifier
    if len(status.installed) == 1:
        return status.installed[0].identifier
    return None


def cmd_status(ctx: Context, args: argparse.Namespace) -> int:
    """Show installed and active variants."""
    families = [get_family(args.family)] if args.family else list(FAMILIES)
    statuses = [ctx.driver.status(family) for family in families]

    if ctx.json_output:
        _emit_json([s.to_dict() for s in statuses])
    else:
        render_status(statuses)
    return EXIT_OK


def cmd_list(ctx: Context, args: argparse.Namespace) -> int:
    """List installed variants of one family."""
    family = get_family(args.family)
    status = ctx.driver.status(family)

    if ctx.json_output:
        _emit_json([v.to_dict() for v in status.installed])
        return EXIT_OK

    print(f"{family.display_name}:")
    render_variants(list(status.installed))
    if status.unmanaged:
        print(f"  PATH resolves {family.executable} to {status.resolved_executable} (not managed by Scoop)")
    for package in ctx.driver.unlisted_variants(family, status):
        print(f"  warning: Scoop lists {package.name} {package.version} but {package.path} was not found",
              file=sys.stderr)
    return EXIT_OK


def cmd_install(ctx: Context, args: argparse.Namespace) -> int:
    family = get_family(args.family)
    ctx.driver.ensure_ready()
    return _finish(ctx, ctx.driver.install(family, args.version))


def cmd_switch(ctx: Context, args: argparse.Namespace) -> int:
    family = get_family(args.family)
    ctx.driver.ensure_ready()
    return _finish(ctx, ctx.driver.switch(family, args.version))


def cmd_uninstall(ctx: Context, args: argparse.Namespace) -> int:
    family = get_family(args.family)
    identifier = _uninstall_target(ctx, family, args.version)
    if identifier is None:
        get_logger().error(f"No active {family.display_name} variant; specify which version to uninstall")
        return EXIT_FAILURE

    ctx.driver.ensure_ready()
    return _finish(ctx, ctx.driver.uninstall(family, identifier))


def cmd_refresh(ctx: Context, args: argparse.Namespace) -> int:
    """Rebuild the process PATH and home variables from the persisted environment."""
    path = ctx.synchronizer.refresh()
    homes = {
        f.home_variable: ctx.synchronizer.environ.get(f.home_variable)
        for f in FAMILIES
        if f.home_variable
    }

    if ctx.json_output:
        _emit_json({"path": split_path(path), **homes})
        return EXIT_OK

    for entry in split_path(path):
        print(entry)
    for name, value in homes.items():
        print(f"{name}={value or ''}", file=sys.stderr)
    return EXIT_OK


def _prompt(message: str) -> str | None:
    try:
        return input(message).strip()
    except EOFError:
        return None


def _confirm(message: str) -> bool:
    answer = _prompt(f"{message} [y/N] ")
    return bool(answer) and answer.lower() in ("y", "yes")


def _choose_home(ctx: Context) -> str | None:
    """Let the user pick a discovered JDK home or type a path."""
    candidates = scan_homes(JAVA, ctx.layout, ctx.config, verbose=ctx.verbose)
    if not candidates:
        print("No JDK installations found.")
        return _prompt("Enter the JDK home path: ") or None

    print("JDK installations:")
    render_homes(candidates)
    answer = _prompt(f"Select [1-{len(candidates)}] or enter a path: ")
    if not answer:
        return None
    if answer.isdigit():
        index = int(answer)
        if 1 <= index <= len(candidates):
            return candidates[index - 1].path
        print(f"Invalid selection: {answer}")
        return None
    return answer


def cmd_java_home(ctx: Context, args: argparse.Namespace) -> int:
    """Point JAVA_HOME at a JDK and put its bin dir first on PATH."""
    path = args.path or _choose_home(ctx)
    if not path:
        print("JAVA_HOME unchanged.")
        return EXIT_OK

    if not validate_home(JAVA, path):
        message = f"{path} does not look like a JDK home (no bin/java)"
        if args.force:
            get_logger().warning(f"{message}; using it anyway")
        elif args.path:
            get_logger().error(message)
            get_logger().error("  -> Pass --force to use it anyway")
            return EXIT_FAILURE
        elif not _confirm(f"{message}. Use it anyway?"):
            print("JAVA_HOME unchanged.")
            return EXIT_OK

    warnings = ctx.synchronizer.set_home(JAVA, path)
    if ctx.json_output:
        _emit_json({"JAVA_HOME": path, "warnings": warnings})
    else:
        print(f"JAVA_HOME={path}")
        for warning in warnings:
            print(f"  warning: {warning}", file=sys.stderr)
    return EXIT_OK


def _menu_family() -> RuntimeFamily | None:
    print("Runtimes:")
    for index, family in enumerate(FAMILIES, start=1):
        print(f"  {index}) {family.display_name}")
    print("  0) Exit")
    answer = _prompt("Select: ")
    if not answer or answer == "0":
        return None
    if answer.isdigit() and 1 <= int(answer) <= len(FAMILIES):
        return FAMILIES[int(answer) - 1]
    try:
        return get_family(answer)
    except ValueError:
        print(f"Unknown runtime: {answer}")
        return None


def _run_menu_action(ctx: Context, family: RuntimeFamily, choice: str) -> None:
    driver = ctx.driver
    if choice == "1":
        render_variants(list(driver.status(family).installed))
        return
    if choice == "5" and family.home_variable:
        cmd_java_home(ctx, argparse.Namespace(path=None, force=False))
        return

    version = _prompt("Version (e.g. 21, 8.2, latest, or an exact package name): ")
    if version is None:
        return

    driver.ensure_ready()
    if choice == "2":
        result = driver.install(family, version)
    elif choice == "3":
        result = driver.switch(family, version)
    else:
        identifier = _uninstall_target(ctx, family, version or None)
        if identifier is None:
            print("Nothing to uninstall.")
            return
        result = driver.uninstall(family, identifier)

    render_result(result)
    if result.state == NO_CANDIDATE_SUCCEEDED:
        _report_error(ResolutionExhaustedError(result.requested, result.attempted))


def cmd_menu(ctx: Context, args: argparse.Namespace) -> int:
    """Interactive numbered menu. Returns 0 when the user exits."""
    family = get_family(args.family) if args.family else _menu_family()
    actions = {"1": "Show installed", "2": "Install", "3": "Switch", "4": "Uninstall"}

    while family is not None:
        status = ctx.driver.status(family)
        active = status.active.identifier if status.active else "none"
        print(f"\n== {family.display_name} (active: {active}) ==")
        for key, label in actions.items():
            print(f"  {key}) {label}")
        if family.home_variable:
            print(f"  5) Set {family.home_variable}")
        print("  0) Exit")

        choice = _prompt("Select: ")
        if choice is None or choice == "0":
            break
        if choice in actions or (choice == "5" and family.home_variable):
            _run_menu_action(ctx, family, choice)
        else:
            print(f"Invalid selection: {choice}")

    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="runtime-switch",
        description="Install, switch and uninstall PHP, Python, Java and Node.js runtimes via Scoop",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Configuration file (YAML or JSON)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only show warnings and errors")
    parser.add_argument("--log-file", help="Write a DEBUG log to this file")
    parser.add_argument("--json", action="store_true", help="Machine-readable output on stdout")

    subparsers = parser.add_subparsers(dest="command", required=True)

    status = subparsers.add_parser("status", help="Show installed and active variants")
    status.add_argument("family", nargs="?", help="Runtime family (default: all)")
    status.set_defaults(func=cmd_status)

    list_parser = subparsers.add_parser("list", help="List installed variants of a family")
    list_parser.add_argument("family")
    list_parser.set_defaults(func=cmd_list)

    install = subparsers.add_parser("install", help="Install a version")
    install.add_argument("family")
    install.add_argument("version", help="Version (8.2, 21, latest, lts) or exact package name")
    install.set_defaults(func=cmd_install)

    switch = subparsers.add_parser("switch", help="Make a version the active one")
    switch.add_argument("family")
    switch.add_argument("version")
    switch.set_defaults(func=cmd_switch)

    uninstall = subparsers.add_parser("uninstall", help="Uninstall a version (default: the active one)")
    uninstall.add_argument("family")
    uninstall.add_argument("version", nargs="?")
    uninstall.set_defaults(func=cmd_uninstall)

    refresh = subparsers.add_parser("refresh", help="Rebuild PATH from the persisted environment")
    refresh.set_defaults(func=cmd_refresh)

    java_home = subparsers.add_parser("java-home", help="Set JAVA_HOME")
    java_home.add_argument("path", nargs="?", help="JDK home (default: choose interactively)")
    java_home.add_argument("--force", action="store_true", help="Accept a path without bin/java")
    java_home.set_defaults(func=cmd_java_home)

    menu = subparsers.add_parser("menu", help="Interactive menu")
    menu.add_argument("family", nargs="?")
    menu.set_defaults(func=cmd_menu)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for runtime-switch."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(log_file=args.log_file, verbose=args.verbose, quiet=args.quiet)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_PRECONDITION

    try:
        ctx = build_context(args)
        return args.func(ctx, args)
    except PreconditionError as e:
        _report_error(e)
        return EXIT_PRECONDITION
    except SwitchError as e:
        _report_error(e)
        return EXIT_FAILURE
    except ValueError as e:
        get_logger().error(str(e))
        return EXIT_PRECONDITION

"""Command-line interface for nodeshim.

This module holds the shim entry points (node, npm, npx, yarn, pnpm,
corepack) and the ``nodeshim`` management command.
"""

import argparse
import logging
import sys

from . import __version__
from .config import ENV_VERBOSE, InvocationRequest, ShimSettings, is_truthy
from .dispatch import MODE_CONTAINER, build_plan, dispatch
from .errors import ShimError

SHIM_TOOLS = ("node", "npm", "npx", "yarn", "pnpm", "corepack")


def setup_logging(verbose, quiet):
    """Configure logging based on verbosity flags."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s", stream=sys.stderr)
    elif quiet:
        logging.basicConfig(level=logging.ERROR, stream=sys.stderr)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stderr)


def run_shim(tool, argv=None):
    """Run a tool through the dispatcher and exit with its status."""
    if argv is None:
        argv = sys.argv[1:]

    request = InvocationRequest.current(tool, argv)
    setup_logging(is_truthy(request.environ.get(ENV_VERBOSE)), quiet=True)

    try:
        returncode = dispatch(request)
    except ShimError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    sys.exit(returncode)


def node():
    run_shim("node")


def npm():
    run_shim("npm")


def npx():
    run_shim("npx")


def yarn():
    run_shim("yarn")


def pnpm():
    run_shim("pnpm")


def corepack():
    run_shim("corepack")


def cmd_plan(args):
    """Show the command a shim invocation would execute."""
    if args.tool not in SHIM_TOOLS:
        print(
            f"Error: unknown tool '{args.tool}'. Choose from: {', '.join(SHIM_TOOLS)}",
            file=sys.stderr,
        )
        sys.exit(1)

    tool_args = list(args.tool_args)
    if tool_args and tool_args[0] == "--":
        tool_args = tool_args[1:]

    request = InvocationRequest.current(args.tool, tool_args)
    try:
        settings = ShimSettings.load(request.cwd, request.environ, request.home)
        plan = build_plan(request, settings)
    except ShimError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)

    logging.debug(f"Mode: {plan.mode}")
    if plan.mode == MODE_CONTAINER:
        logging.debug(f"Image: {plan.image.reference} (from {plan.image.source})")
    print(plan.describe())


def cmd_config_show(args):
    """Show effective settings and the config files they came from."""
    request = InvocationRequest.current("node", [])
    try:
        settings = ShimSettings.load(request.cwd, request.environ, request.home)
    except ShimError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)

    print("files:")
    if settings.config_files:
        for path in settings.config_files:
            print(f"  {path}")
    else:
        print("  # No config files found")
    print()

    print("defaults:")
    for key, value in sorted(settings.to_dict().items()):
        print(f"  {key} = {repr(value)}")


def create_parser():
    """Create the main argument parser."""
    parser = argparse.ArgumentParser(
        prog="nodeshim",
        description="nodeshim runs Node.js tools in Docker containers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,  # Require full option names
    )

    parser.add_argument("--version", action="version", version=f"nodeshim {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress non-essential output")

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    plan_parser = subparsers.add_parser(
        "plan",
        help="Show the command a shim would run",
        usage="nodeshim [global options] plan TOOL [-- ARGS ...]",
        description="""Show the command a shim would run

Examples:
    nodeshim plan npm -- install       # docker run line for 'npm install'
    nodeshim plan yarn -- dev          # Shows published dev-server ports
    nodeshim -v plan node -- --version # Also log resolution details""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    plan_parser.add_argument("tool", help=f"Tool to plan ({', '.join(SHIM_TOOLS)})")
    plan_parser.add_argument("tool_args", nargs=argparse.REMAINDER, help="Tool arguments")

    config_parser = subparsers.add_parser("config", help="Configuration management commands")
    config_subparsers = config_parser.add_subparsers(
        dest="config_command", help="Config subcommands"
    )
    config_subparsers.add_parser("show", help="Show effective configuration")

    return parser


def main(argv=None):
    """Main entry point."""
    if argv is None:
        argv = sys.argv[1:]

    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.quiet)

    if args.subcommand == "plan":
        cmd_plan(args)
    elif args.subcommand == "config":
        if args.config_command == "show" or args.config_command is None:
            cmd_config_show(args)
        else:
            parser.parse_args(["config", "--help"])
    else:
        parser.print_help()
        sys.exit(1)

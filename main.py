#!/usr/bin/env python3
"""Vulnerable Shop - Command Line Interface.

Intentionally vulnerable web shop for practising file-upload, XXE, YAML
bomb and CSRF attacks. DO NOT expose it to untrusted networks.

Usage:
    python main.py
    python main.py --port 8080 --root /srv/vulnshop
    python main.py --archive-naming random --verbose
"""

import argparse
import os
import sys

from vulnshop import __version__
from vulnshop.app import create_app
from vulnshop.challenges import ChallengeRegistry
from vulnshop.config import (
    ARCHIVE_NAMING,
    ARCHIVE_NAMING_STRATEGIES,
    HOST,
    PORT,
    SHOP_ROOT,
    configure_logging,
    get_config_summary,
)


# =============================================================================
# CONSTANTS
# =============================================================================

BANNER = """
╔═══════════════════════════════════════════════════════════════════╗
║          ╦  ╦╦ ╦╦  ╔╗╔  ╔═╗╦ ╦╔═╗╔═╗                              ║
║          ╚╗╔╝║ ║║  ║║║  ╚═╗╠═╣║ ║╠═╝                              ║
║           ╚╝ ╚═╝╩═╝╝╚╝  ╚═╝╩ ╩╚═╝╩                                ║
║                                                                   ║
║          Intentionally Vulnerable Shop - Training Use Only        ║
╚═══════════════════════════════════════════════════════════════════╝
"""


# =============================================================================
# ARGUMENT PARSER
# =============================================================================

def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="vulnshop",
        description="Intentionally vulnerable shop for security training",
        epilog=(
            "Examples:\n"
            "  python main.py\n"
            "  python main.py --port 8080 --root /srv/vulnshop\n"
            "  python main.py --archive-naming random --verbose\n"
            "\n"
            f"Archive naming strategies: {', '.join(sorted(ARCHIVE_NAMING_STRATEGIES))}"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--host",
        default=HOST,
        help=f"Interface to bind (default: {HOST})"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=PORT,
        help=f"Port to listen on (default: {PORT})"
    )
    parser.add_argument(
        "--root", "-r",
        metavar="DIR",
        default=None,
        help=f"Shop root for ftp/, uploads/ and assets/ (default: {SHOP_ROOT})"
    )
    parser.add_argument(
        "--archive-naming",
        choices=sorted(ARCHIVE_NAMING_STRATEGIES),
        default=ARCHIVE_NAMING,
        help=f"Filename strategy for extracted zip entries (default: {ARCHIVE_NAMING})"
    )

    # Verbosity
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output with debug information"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (warnings and errors only)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


# =============================================================================
# OUTPUT HELPERS
# =============================================================================

def print_banner() -> None:
    """Display the application banner."""
    print(BANNER)


def print_startup_info(host: str, port: int, registry: ChallengeRegistry) -> None:
    """Display the listening address and challenge overview."""
    settings = get_config_summary()
    enabled = [c for c in registry.all() if not c.disabled]

    print(f"{'━' * 67}")
    print(f"  Listening:   http://{host}:{port}")
    print(f"  Safety mode: {settings['safety_mode']} (env: {settings['runtime_env'] or 'local'})")
    print(f"  Challenges:  {len(enabled)}/{len(registry.all())} enabled")
    print(f"{'━' * 67}")
    print()


def print_error(message: str, tip: str = None) -> None:
    """Print an error message with optional tip."""
    print(f"\n❌ Error: {message}", file=sys.stderr)
    if tip:
        print(f"💡 Tip: {tip}", file=sys.stderr)
    print()


# =============================================================================
# MAIN FUNCTION
# =============================================================================

def main() -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_argument_parser()
    args = parser.parse_args()

    if args.verbose:
        log_level = "DEBUG"
    elif args.quiet:
        log_level = "WARNING"
    else:
        log_level = "INFO"

    configure_logging(level=log_level)

    if not args.quiet:
        print_banner()

    overrides = {"ARCHIVE_NAMING": args.archive_naming}
    if args.root:
        root = os.path.abspath(args.root)
        overrides["SHOP_ROOT"] = root
        overrides["DATABASE_PATH"] = os.path.join(root, "data", "vulnshop.db")

    try:
        app = create_app(overrides)
    except OSError as e:
        print_error(
            f"Cannot prepare shop directories: {e}",
            "Check permissions of the --root directory"
        )
        return 3

    if not args.quiet:
        print_startup_info(args.host, args.port, app.extensions["vulnshop"].challenges)

    try:
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
    except OSError as e:
        print_error(
            f"Cannot listen on {args.host}:{args.port}: {e}",
            "Pick another port with --port"
        )
        return 2

    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    try:
        exit_code = main()
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\n\n⚠️  Shop stopped by user")
        sys.exit(130)
    except Exception as e:
        print(f"\n❌ Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)

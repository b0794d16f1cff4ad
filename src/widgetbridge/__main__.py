"""CLI entry point for widgetbridge."""

import sys


def main() -> int:
    """Main entry point for the widgetbridge CLI."""
    from widgetbridge.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())

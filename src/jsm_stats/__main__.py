"""Entry point for ``python -m jsm_stats``."""

from __future__ import annotations

import argparse
import sys


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jsm-stats",
        description="Operational statistics for Jira Service Management desks.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Store and verify Jira credentials.")
    login.add_argument("--url", required=True, help="Site URL, e.g. company.atlassian.net")
    login.add_argument("--email", required=True, help="Atlassian account email.")
    login.add_argument(
        "--token", help="API token (prompted for when omitted)."
    )

    sub.add_parser("logout", help="Remove stored credentials.")
    sub.add_parser("desks", help="Discover service desks and reference metadata.")

    period_help = "Time period: today, 7d, 30d or 90d (default: saved preference)."

    stats = sub.add_parser("stats", help="Fetch one metrics snapshot.")
    stats.add_argument("--project", help="Project key (default: saved preference).")
    stats.add_argument("--period", help=period_help)
    stats.add_argument("--json", action="store_true", help="Print the snapshot as JSON.")

    watch = sub.add_parser("watch", help="Refresh periodically and report ticket changes.")
    watch.add_argument("--project", help="Project key (default: saved preference).")
    watch.add_argument("--period", help=period_help)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the ``jsm-stats`` command line."""
    args = build_parser().parse_args(argv if argv is not None else sys.argv[1:])

    from jsm_stats.app import run_app

    return run_app(args)


if __name__ == "__main__":
    raise SystemExit(main())

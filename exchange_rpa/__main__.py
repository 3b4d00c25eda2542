from __future__ import annotations

import argparse
import sys
from typing import Sequence

COMMANDS = ("report", "caregivers")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="exchange_rpa", description="Portal automation entrypoint")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("report", help="Download one report for a date range", add_help=False)
    subparsers.add_parser("caregivers", help="Enter ready caregivers from the work board", add_help=False)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()
    if not args or args[0] not in COMMANDS:
        parser.parse_args(args[:1])
        parser.error("Unknown command")
        return 2

    command, rest = args[0], args[1:]
    if command == "report":
        from exchange_rpa.reports.main import run as report_run

        return report_run(rest)

    from exchange_rpa.caregivers.main import run as caregivers_run

    return caregivers_run(rest)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

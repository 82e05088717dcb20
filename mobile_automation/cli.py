#!/usr/bin/env python3
"""
Command line entry point.

  python -m mobile_automation.cli run --matrix caps.json --suite smoke.json
  python -m mobile_automation.cli validate --matrix caps.json --suite smoke.json
  python -m mobile_automation.cli serve --port 8080

Exit codes: 0 all sessions passed, 2 at least one session failed or
errored, 1 bad arguments or configuration.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from .capabilities import assign_session_ports, load_capability_matrix
from .config import load_settings
from .coordinator import run_suite_files
from .errors import ConfigError
from .suite import load_suite

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_FAILED = 2


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_CONFIG, f"{self.prog}: error: {message}\n")


def _add_input_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--matrix", required=True, help="Path to a capability matrix JSON file.")
    parser.add_argument("--suite", required=True, help="Path to a step suite JSON file.")


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="mobile-automation",
        description="Run declarative UI suites against Android and iOS devices in parallel.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, parser_class=_ArgumentParser)

    run = subparsers.add_parser("run", help="Run a suite on every device in a capability matrix.")
    _add_input_args(run)
    run.add_argument("--max-concurrency", type=int, default=None, help="Sessions in flight at once.")
    run.add_argument("--server-url", default=None, help="Automation endpoint URL.")
    run.add_argument("--artifacts-dir", default=None, help="Where screenshots and page sources go.")
    run.add_argument(
        "--deadline-s",
        type=float,
        default=None,
        help="Per-session deadline; steps not started by then are marked cancelled.",
    )
    run.add_argument(
        "--report-path",
        default="",
        help=(
            "Output path for the JSON report. If omitted, writes to "
            "<artifacts-dir>/run_report_<timestamp>.json"
        ),
    )

    validate = subparsers.add_parser("validate", help="Check a matrix and suite without starting sessions.")
    _add_input_args(validate)

    serve = subparsers.add_parser("serve", help="Start the HTTP run service.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    return parser


def _cmd_run(args: argparse.Namespace) -> int:
    if args.max_concurrency is not None and args.max_concurrency <= 0:
        print("ERROR: --max-concurrency must be > 0", file=sys.stderr)
        return EXIT_CONFIG
    if args.deadline_s is not None and args.deadline_s <= 0:
        print("ERROR: --deadline-s must be > 0", file=sys.stderr)
        return EXIT_CONFIG

    try:
        settings = load_settings(
            server_url=args.server_url,
            artifacts_dir=args.artifacts_dir,
            max_concurrency=args.max_concurrency,
        )
        report = run_suite_files(
            matrix_path=args.matrix,
            suite_path=args.suite,
            settings=settings,
            deadline_s=args.deadline_s,
        )
    except (ConfigError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG

    for result in report["results"]:
        steps = result["steps"]
        passed = sum(1 for s in steps if s["outcome"] == "pass")
        print(
            f"{result['capabilities']}: {result['outcome'].upper()} "
            f"steps={passed}/{len(steps)} duration={result['duration_s']}s"
            + (f" error={result['error']}" if result["error"] else "")
        )

    if args.report_path:
        report_path = Path(args.report_path).resolve()
    else:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        report_path = (settings.artifacts_dir / f"run_report_{stamp}.json").resolve()
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2), encoding="utf-8")

    summary = report["summary"]
    print(
        f"total={summary['total']} passed={summary['passed']} "
        f"failed={summary['failed']} errored={summary['errored']}"
    )
    print(f"report={report_path}")
    return EXIT_OK if summary["passed"] == summary["total"] else EXIT_FAILED


def _cmd_validate(args: argparse.Namespace) -> int:
    try:
        matrix = assign_session_ports(load_capability_matrix(args.matrix))
        suite = load_suite(args.suite)
    except (ConfigError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG

    print(f"suite: {suite.name} ({len(suite.steps)} step(s), {len(suite.selectors)} selector(s))")
    for caps in matrix:
        print(f"  {caps.label} platformVersion={caps.platform_version} port={caps.session_port}")
    print("OK")
    return EXIT_OK


def _cmd_serve(args: argparse.Namespace) -> int:
    from .server import create_app

    app = create_app()
    app.run(host=args.host, port=args.port)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )

    if args.command == "run":
        return _cmd_run(args)
    if args.command == "validate":
        return _cmd_validate(args)
    return _cmd_serve(args)


if __name__ == "__main__":
    raise SystemExit(main())

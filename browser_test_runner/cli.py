"""CLI entry point for the browser test runner."""

import argparse
import asyncio
import json
import logging
import shlex
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from browser_test_runner.config_loader import load_job_config
from browser_test_runner.errors import RunnerError
from browser_test_runner.job import Job
from browser_test_runner.models.result import PageResult
from browser_test_runner.runner import execute

STATUS_SYMBOLS = {
    "success": "✅",
    "failure": "❌",
    "error": "❗",
    "timeout": "⏱️",
    "skipped": "⏭️",
}


def log_results_summary(
    log: logging.Logger, page_results: Sequence[PageResult]
) -> None:
    """Log a formatted summary of page results."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for result in page_results:
        symbol = STATUS_SYMBOLS.get(result.status, "?")
        log.info(
            "%s %s: %s (%d passed, %d failed, %.2fs)",
            symbol,
            result.url,
            result.status,
            result.passed,
            result.failed,
            result.duration,
        )
        if result.message:
            log.info("  Message: %s", result.message)


def parse_browser_command(browser: str) -> Sequence[str]:
    """Split the driver command line."""
    return tuple(shlex.split(browser))


async def run(config_path: Path | None, overrides: Mapping[str, Any]) -> int:
    """Run the test pages and return the exit code."""
    log = logging.getLogger("browser_test_runner")

    try:
        config = await load_job_config(config_path, overrides)
    except (FileNotFoundError, ValueError) as e:
        log.error("%s", e)
        return 1

    if not config.url:
        log.info("No test page given")
        print(json.dumps({"total": 0, "results": []}))
        return 0

    job = Job(config=config)
    try:
        page_results = await execute(job)
    except RunnerError as e:
        log.error("Run failed (%d): %s", e.code, e)
        return 1

    log_results_summary(log, page_results)

    output = format_output(page_results)
    print(json.dumps(output, indent=2))

    has_failures = job.failed or any(
        result.status != "success" for result in page_results
    )
    return 1 if has_failures else 0


def format_output(page_results: Sequence[PageResult]) -> dict[str, Any]:
    """Format page results for JSON output."""
    all_results = [
        {
            "url": result.url,
            "status": result.status,
            "duration": result.duration,
            "passed": result.passed,
            "failed": result.failed,
            "message": result.message,
        }
        for result in page_results
    ]

    return {
        "total": len(all_results),
        "passed": sum(1 for r in all_results if r["status"] == "success"),
        "failed": sum(1 for r in all_results if r["status"] == "failure"),
        "errors": sum(1 for r in all_results if r["status"] == "error"),
        "timeouts": sum(1 for r in all_results if r["status"] == "timeout"),
        "skipped": sum(1 for r in all_results if r["status"] == "skipped"),
        "results": all_results,
    }


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map command line flags to configuration fields, None when not given."""
    return {
        "url": args.url or None,
        "browser": parse_browser_command(args.browser) if args.browser else None,
        "cwd": args.cwd,
        "webapp": args.webapp,
        "report_dir": args.report_dir,
        "parallel": args.parallel,
        "page_timeout": args.page_timeout,
        "global_timeout": args.global_timeout,
        "browser_retry": args.retry,
        "coverage": args.coverage,
        "coverage_proxy": args.coverage_proxy,
        "strict": args.strict,
        "fail_fast": args.fail_fast,
        "fail_opa_fast": args.fail_opa_fast,
        "screenshot": False if args.no_screenshot else None,
        "port": args.port,
    }


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run browser-resident unit test pages through browser drivers"
    )
    parser.add_argument("url", nargs="*", help="Test page URLs")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML or JSON configuration file",
    )
    parser.add_argument(
        "--browser",
        default=None,
        help="Command launching the browser driver (shell syntax)",
    )
    parser.add_argument("--cwd", type=Path, default=None, help="Working directory")
    parser.add_argument(
        "--webapp", type=Path, default=None, help="Application directory (legacy)"
    )
    parser.add_argument(
        "--report-dir", type=Path, default=None, help="Report directory"
    )
    parser.add_argument(
        "--parallel", type=int, default=None, help="Pages run at the same time"
    )
    parser.add_argument(
        "--page-timeout", type=float, default=None, help="Seconds, 0 disables"
    )
    parser.add_argument(
        "--global-timeout", type=float, default=None, help="Seconds, 0 disables"
    )
    parser.add_argument(
        "--retry", type=int, default=None, help="Browser retries per page"
    )
    parser.add_argument("--port", type=int, default=None, help="Server port")
    parser.add_argument(
        "--coverage", action="store_true", default=None, help="Collect coverage"
    )
    parser.add_argument(
        "--coverage-proxy",
        action="store_true",
        default=None,
        help="Instrument remote sources on the fly",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Reject pages with malformed test declarations",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        default=None,
        help="Skip remaining pages after the first failure",
    )
    parser.add_argument(
        "--fail-opa-fast",
        action="store_true",
        default=None,
        help="End a page at its first failing test",
    )
    parser.add_argument(
        "--no-screenshot", action="store_true", help="Disable screenshots"
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(run(args.config, build_overrides(args)))
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()

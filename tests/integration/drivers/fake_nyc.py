"""Stand-in for the nyc command line used by the integration tests.

Only the commands and options the runner uses are understood, files are
copied instead of being instrumented and reports are summaries of the merged
coverage.
"""

import json
import sys
from pathlib import Path

MARKER = "/* instrumented */\n"


def option(args: list[str], name: str) -> str:
    return args[args.index(name) + 1]


def instrument(args: list[str]) -> None:
    source = Path(args[0])
    if source.is_file():
        sys.stdout.write(MARKER + source.read_text())
        return
    target = Path(args[1])
    for path in source.rglob("*"):
        if path.is_file():
            copy = target / path.relative_to(source)
            copy.parent.mkdir(parents=True, exist_ok=True)
            copy.write_text(MARKER + path.read_text())


def merge(args: list[str]) -> None:
    merged: dict = {}
    for path in sorted(Path(args[0]).glob("*.json")):
        merged.update(json.loads(path.read_text()))
    Path(args[1]).write_text(json.dumps(merged))


def report(args: list[str]) -> None:
    merged_file = Path(option(args, "--temp-dir")) / "coverage.json"
    merged = json.loads(merged_file.read_text())
    report_dir = Path(option(args, "--report-dir"))
    report_dir.mkdir(parents=True, exist_ok=True)
    if "--reporter=lcov" in args:
        records = "".join(
            f"SF:{coverage['path']}\nend_of_record\n" for coverage in merged.values()
        )
        (report_dir / "lcov.info").write_text(records)
    print(f"{len(merged)} file(s) covered")


def main() -> None:
    command, *args = sys.argv[1:]
    if command == "instrument":
        instrument(args)
    elif command == "merge":
        merge(args)
    elif command == "report":
        report(args)
    else:
        print(f"unknown command {command}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Code quality gate for PathRec.

Steps run in order: byte-compile every module, sort imports, format, then run
the test suite. Each step is a subprocess started from the project root and a
summary table is printed at the end.

Usage:
    python scripts/lint_all.py [--check] [--skip-tests] [--only STEP ...]

Examples:
    python scripts/lint_all.py --check
    python scripts/lint_all.py --only compile pytest
"""

import argparse
import subprocess
import sys
import time
from pathlib import Path
from typing import Dict, List, Tuple

ROOT_DIR = Path(__file__).resolve().parent.parent
SOURCE_DIRS = ("src", "tests", "scripts")
STEP_NAMES = ("compile", "isort", "black", "pytest")
RULE = "-" * 60


def build_steps(check: bool) -> Dict[str, List[str]]:
    """Command line per step; ``check`` turns the formatters read-only."""
    isort_cmd = ["isort", *SOURCE_DIRS]
    black_cmd = ["black", *SOURCE_DIRS]
    if check:
        isort_cmd += ["--check-only", "--diff"]
        black_cmd += ["--check"]

    return {
        "compile": [sys.executable, "-m", "compileall", "-q", *SOURCE_DIRS],
        "isort": isort_cmd,
        "black": black_cmd,
        "pytest": [sys.executable, "-m", "pytest", "tests", "-q"],
    }


def run_step(name: str, cmd: List[str]) -> Tuple[bool, float]:
    """Run one step; returns (succeeded, seconds)."""
    print(RULE)
    print(f"[{name}] {' '.join(cmd)}")
    print(RULE)

    started = time.monotonic()
    try:
        returncode = subprocess.run(cmd, cwd=ROOT_DIR, check=False).returncode
    except FileNotFoundError:
        print(f"[{name}] tool not installed; try: pip install -e '.[test]' black isort")
        returncode = 127
    return returncode == 0, time.monotonic() - started


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PathRec code quality gate")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Report formatting problems without rewriting files",
    )
    parser.add_argument(
        "--skip-tests",
        action="store_true",
        help="Leave out the pytest step",
    )
    parser.add_argument(
        "--only",
        nargs="+",
        choices=STEP_NAMES,
        help="Run just these steps",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    steps = build_steps(args.check)

    selected = list(args.only or STEP_NAMES)
    if args.skip_tests and "pytest" in selected:
        selected.remove("pytest")

    outcomes = {name: run_step(name, steps[name]) for name in selected}

    print(f"\n{RULE}\nSummary\n{RULE}")
    for name, (ok, seconds) in outcomes.items():
        print(f"  {'ok  ' if ok else 'FAIL'}  {name:<8} {seconds:6.1f}s")

    failed = [name for name, (ok, _) in outcomes.items() if not ok]
    if failed:
        print(f"\nFailed steps: {', '.join(failed)}")
        return 1
    print("\nAll checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

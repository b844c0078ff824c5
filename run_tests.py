#!/usr/bin/env python3
"""
Run the full Shogun test suite.

Usage:
    python run_tests.py                  # default: verbose, stop on first failure
    python run_tests.py -k stealth       # filter by keyword
    python run_tests.py --cov            # with coverage for shogun_core
    python run_tests.py -- --tb=long     # pass extra flags to pytest
"""

import argparse
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
TESTS_DIR = ROOT / "tests"


def run_tests(pytest_args: list[str]) -> int:
    """Invoke pytest and return its exit code."""
    print("=== Running Shogun test suite ===")

    # Test modules import helpers from tests/conftest.py, so probe imports
    # with the tests directory on sys.path and skip modules whose optional
    # dependencies are missing.
    ignore_flags: list[str] = []
    for test_file in sorted(TESTS_DIR.glob("test_*.py")):
        probe = (
            "import importlib, sys; "
            f"sys.path[:0] = ['.', {str(TESTS_DIR)!r}]; "
            f"importlib.import_module({test_file.stem!r})"
        )
        result = subprocess.run([sys.executable, "-c", probe], cwd=ROOT, capture_output=True)
        if result.returncode != 0:
            print(f"  ⚠  Skipping {test_file.name} (import failed — missing dependency?)")
            ignore_flags += ["--ignore", str(test_file)]

    cmd = [
        sys.executable, "-m", "pytest",
        str(TESTS_DIR),
        "-x",
        "-v",
        "--tb=short",
        *ignore_flags,
        *pytest_args,
    ]
    return subprocess.call(cmd, cwd=ROOT)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the Shogun test suite.")
    parser.add_argument(
        "--cov",
        action="store_true",
        help="Report coverage for the shogun_core package (needs pytest-cov).",
    )
    parser.add_argument(
        "-k",
        metavar="EXPRESSION",
        help="Only run tests matching the given pytest keyword expression.",
    )
    args, extra = parser.parse_known_args()

    pytest_args = extra
    if args.k:
        pytest_args = ["-k", args.k, *pytest_args]
    if args.cov:
        pytest_args = ["--cov=shogun_core", "--cov-report=term-missing", *pytest_args]

    return run_tests(pytest_args)


if __name__ == "__main__":
    raise SystemExit(main())
